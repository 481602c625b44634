"""Configuration loader for agent settings."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


@dataclass(frozen=True)
class AgentPaths:
    lock_file: Path
    cached_catalog: Path
    last_run_report: Path
    last_run_summary: Path


class AgentSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    certname: str
    state_dir: str
    environment: str = "production"
    use_last_environment: bool = True
    server: str | None = None
    server_list: list[str] = []
    server_port: int = 8140
    wait_for_lock_seconds: float = 0
    max_wait_for_lock_seconds: float = 60
    use_cache_on_failure: bool = True
    use_cached_catalog: bool = False
    report: bool = True
    http_timeout_seconds: float = 30
    ssl_trust_store: str | None = None
    log_level: str = "INFO"

    @field_validator("certname", "environment")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("server_list", mode="before")
    @classmethod
    def _split_server_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("wait_for_lock_seconds", "max_wait_for_lock_seconds", "http_timeout_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @property
    def log_level_value(self) -> int:
        level = getattr(logging, self.log_level.upper(), None)
        return level if isinstance(level, int) else logging.INFO

    def paths(self) -> AgentPaths:
        root = Path(self.state_dir)
        return AgentPaths(
            lock_file=root / "state" / "agent_catalog_run.lock",
            cached_catalog=root / "client_data" / "catalog" / f"{self.certname}.json",
            last_run_report=root / "state" / "last_run_report.yaml",
            last_run_summary=root / "state" / "last_run_summary.yaml",
        )


def _expand_str(value: str) -> str:
    def replacer(match: re.Match[str]) -> str:
        token = match.group(1)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise ValueError(f"missing environment variable: {token}")
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def _expand_payload(value: Any) -> Any:
    if isinstance(value, str):
        return _expand_str(value)
    if isinstance(value, list):
        return [_expand_payload(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _expand_payload(item) for key, item in value.items()}
    return value


def load_settings(path: Path, **overrides: Any) -> AgentSettings:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    expanded = _expand_payload(data)
    expanded.update({key: value for key, value in overrides.items() if value is not None})
    return AgentSettings(**expanded)
