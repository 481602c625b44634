"""Durable cache of the last successfully applied catalog."""

from __future__ import annotations

import logging
from pathlib import Path

from .models import Catalog
from .schemas import SchemaRegistry
from .storage import ArtifactRef, LocalStateStore


class CatalogCache:
    def __init__(self, path: Path, schemas: SchemaRegistry | None = None) -> None:
        self.logger = logging.getLogger(__name__)
        self.path = path
        self.schemas = schemas
        self.store = LocalStateStore(path.parent)

    def exists(self) -> bool:
        return self.store.exists(self.path.name)

    def load(self) -> Catalog | None:
        if not self.exists():
            return None
        try:
            document = self.store.read_json(self.path.name)
            if self.schemas is not None:
                self.schemas.validate("catalog.schema.yaml", document)
            return Catalog.from_document(document)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            # json.JSONDecodeError and schema failures are ValueErrors
            self.logger.warning("Cache: unable to read cached catalog %s: %s", self.path, exc)
            return None

    def save(self, catalog: Catalog) -> ArtifactRef:
        self.logger.info("Caching catalog for %s", catalog.name)
        return self.store.write_json(self.path.name, catalog.to_document())
