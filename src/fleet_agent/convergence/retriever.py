"""Catalog retrieval (live or cached) and on-demand file source resolution."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote, urlparse

from .cache import CatalogCache
from .config import AgentSettings
from .errors import (
    CatalogUnavailableError,
    ConvergenceError,
    FileSourceError,
    HttpStatusError,
    ServerUnreachableError,
    TransportTrustError,
)
from .ids import sha256_checksum
from .models import CachedCatalogStatus, Catalog, FileMetadata
from .schemas import SchemaRegistry
from .servers import ServerEndpoint, ServerSelection
from .transport import HttpTransport

SOURCE_SCHEME = "fleet"


class CatalogSource(str, Enum):
    SERVER = "server"
    CACHE = "cache"


@dataclass(frozen=True)
class RetrievedCatalog:
    catalog: Catalog
    source: CatalogSource
    cached_status: CachedCatalogStatus = CachedCatalogStatus.NOT_USED
    selection: ServerSelection | None = None

    @property
    def server_used(self) -> str | None:
        if self.source != CatalogSource.SERVER or self.selection is None:
            return None
        return self.selection.server_used

    @property
    def endpoint(self) -> ServerEndpoint | None:
        return self.selection.endpoint if self.selection else None


class CatalogRetriever:
    def __init__(
        self,
        settings: AgentSettings,
        transport: HttpTransport,
        cache: CatalogCache,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.settings = settings
        self.transport = transport
        self.cache = cache
        self.schemas = schemas

    def cached(self) -> RetrievedCatalog | None:
        """Explicitly requested cache use; no server is contacted."""
        catalog = self.cache.load()
        if catalog is None:
            self.logger.warning("Agent: use_cached_catalog is set but no usable cached catalog exists")
            return None
        self.logger.info("Using cached catalog from environment '%s'", catalog.environment)
        return RetrievedCatalog(catalog, CatalogSource.CACHE, CachedCatalogStatus.EXPLICITLY_REQUESTED)

    def fetch(
        self,
        selection: ServerSelection,
        environment: str,
        facts: dict[str, Any],
        transaction_uuid: str,
    ) -> RetrievedCatalog:
        try:
            catalog = self._fetch_live(selection, environment, facts, transaction_uuid)
        except TransportTrustError:
            raise
        except (ServerUnreachableError, HttpStatusError, ValueError, KeyError, TypeError) as exc:
            return self._fallback(exc, selection)
        return RetrievedCatalog(catalog, CatalogSource.SERVER, CachedCatalogStatus.NOT_USED, selection)

    def _fetch_live(
        self,
        selection: ServerSelection,
        environment: str,
        facts: dict[str, Any],
        transaction_uuid: str,
    ) -> Catalog:
        url = f"{selection.endpoint.api_url}/catalog/{quote(self.settings.certname, safe='')}"
        self.logger.info("Retrieving catalog for %s from %s", self.settings.certname, selection.endpoint.label)
        document = self.transport.post_json(
            url,
            {
                "certname": self.settings.certname,
                "environment": environment,
                "facts": facts,
                "transaction_uuid": transaction_uuid,
            },
        )
        if self.schemas is not None:
            self.schemas.validate("catalog.schema.yaml", document)
        catalog = Catalog.from_document(document)
        self.logger.info(
            "Retrieved catalog version=%s environment=%s resources=%d",
            catalog.version,
            catalog.environment,
            len(catalog.resources),
        )
        return catalog

    def _fallback(self, exc: Exception, selection: ServerSelection) -> RetrievedCatalog:
        self.logger.error("Could not retrieve catalog from remote server: %s", exc)
        if not self.settings.use_cache_on_failure:
            raise CatalogUnavailableError(f"Could not retrieve catalog; skipping run: {exc}") from exc
        catalog = self.cache.load()
        if catalog is None:
            raise CatalogUnavailableError("Could not retrieve catalog from cache; skipping run") from exc
        self.logger.warning("Using cached catalog from environment '%s'", catalog.environment)
        return RetrievedCatalog(catalog, CatalogSource.CACHE, CachedCatalogStatus.ON_FAILURE, selection)


@dataclass(frozen=True)
class FileSource:
    metadata: FileMetadata
    fetch_content: Callable[[], bytes]


def _mount_path(source: str) -> str:
    parsed = urlparse(source)
    return unquote(parsed.path).lstrip("/")


class FileSourceResolver:
    """Resolves `source` parameters lazily, during apply.

    Static catalogs inline file metadata keyed by path; those resources use the inline
    metadata and its content_uri and never ask the server for metadata.
    """

    def __init__(
        self,
        transport: HttpTransport,
        catalog: Catalog,
        endpoint: ServerEndpoint | None,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.transport = transport
        self.catalog = catalog
        self.endpoint = endpoint
        self.schemas = schemas

    def resolve(self, path: str, source: str) -> FileSource:
        scheme = urlparse(source).scheme
        if scheme == SOURCE_SCHEME:
            inline = self.catalog.metadata.get(path)
            if inline is not None:
                self.logger.debug("Using inlined metadata for %s", path)
                return FileSource(inline, lambda: self._static_content(inline, source))
            metadata = self._remote_metadata(path, source)
            return FileSource(metadata, lambda: self._remote_content(source))
        if scheme == "https":
            data = self._https_content(source)
            return FileSource(FileMetadata(path=path, source=source, checksum=sha256_checksum(data)), lambda: data)
        if scheme in ("", "file"):
            local = Path(unquote(urlparse(source).path)) if scheme == "file" else Path(source)
            try:
                data = local.read_bytes()
            except OSError as exc:
                raise FileSourceError(f"Could not retrieve file metadata for {source}: {exc}") from exc
            return FileSource(FileMetadata(path=path, source=source, checksum=sha256_checksum(data)), lambda: data)
        raise FileSourceError(f"Unsupported source scheme for {source}")

    def _api_url(self) -> str:
        if self.endpoint is None:
            raise FileSourceError("No more routes to fileserver")
        return self.endpoint.api_url

    def _remote_metadata(self, path: str, source: str) -> FileMetadata:
        url = f"{self._api_url()}/file_metadata/{quote(_mount_path(source))}"
        try:
            payload = self.transport.get_json(url, params={"environment": self.catalog.environment})
            if self.schemas is not None:
                self.schemas.validate("file_metadata.schema.yaml", payload)
        except TransportTrustError as exc:
            raise FileSourceError(f"Could not retrieve file metadata for {source}: certificate verify failed") from exc
        except (ConvergenceError, ValueError) as exc:
            raise FileSourceError(f"Could not retrieve file metadata for {source}: {exc}") from exc
        payload = {**payload, "path": path, "source": source}
        return FileMetadata(**payload)

    def _remote_content(self, source: str) -> bytes:
        url = f"{self._api_url()}/file_content/{quote(_mount_path(source))}"
        return self._content(url, source, params={"environment": self.catalog.environment})

    def _static_content(self, metadata: FileMetadata, source: str) -> bytes:
        if not metadata.content_uri:
            return self._remote_content(metadata.source or source)
        url = f"{self._api_url()}/static_file_content/{quote(_mount_path(metadata.content_uri))}"
        params = {"environment": self.catalog.environment}
        if self.catalog.code_id:
            params["code_id"] = self.catalog.code_id
        return self._content(url, source, params=params)

    def _https_content(self, source: str) -> bytes:
        try:
            return self.transport.get_bytes(source)
        except TransportTrustError as exc:
            raise FileSourceError(f"Could not retrieve file metadata for {source}: certificate verify failed") from exc
        except ConvergenceError as exc:
            raise FileSourceError(f"Could not retrieve file metadata for {source}: {exc}") from exc

    def _content(self, url: str, source: str, *, params: dict[str, Any]) -> bytes:
        try:
            return self.transport.get_bytes(url, params=params)
        except TransportTrustError as exc:
            raise FileSourceError(f"Could not retrieve file content for {source}: certificate verify failed") from exc
        except ConvergenceError as exc:
            raise FileSourceError(f"Could not retrieve file content for {source}: {exc}") from exc
