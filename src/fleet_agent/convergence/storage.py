"""Local state store with replace-on-success writes."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class ArtifactRef:
    path: str
    digest: str | None = None


class LocalStateStore:
    """Every write lands in a sibling temp file and is swapped in with `os.replace`,
    so readers see either the previous file or the complete new one."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _full_path(self, relative_path: str | Path) -> Path:
        return self.root / relative_path

    def _replace(self, path: Path, data: bytes) -> ArtifactRef:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return ArtifactRef(path=str(path))

    def write_json(self, relative_path: str | Path, payload: dict[str, Any]) -> ArtifactRef:
        data = json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
        return self._replace(self._full_path(relative_path), (data + "\n").encode("utf-8"))

    def write_yaml(self, relative_path: str | Path, payload: dict[str, Any]) -> ArtifactRef:
        data = yaml.safe_dump(payload, sort_keys=False, default_flow_style=False, allow_unicode=True)
        return self._replace(self._full_path(relative_path), data.encode("utf-8"))

    def write_bytes(self, relative_path: str | Path, content: bytes) -> ArtifactRef:
        return self._replace(self._full_path(relative_path), content)

    def read_json(self, relative_path: str | Path) -> dict[str, Any]:
        return json.loads(self._full_path(relative_path).read_text(encoding="utf-8"))

    def read_yaml(self, relative_path: str | Path) -> dict[str, Any]:
        return yaml.safe_load(self._full_path(relative_path).read_text(encoding="utf-8")) or {}

    def exists(self, relative_path: str | Path) -> bool:
        return self._full_path(relative_path).exists()
