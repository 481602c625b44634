"""Environment negotiation between the node and the catalog server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from .config import AgentSettings
from .models import Catalog, RunStatusState, RunSummary
from .storage import LocalStateStore


@dataclass(frozen=True)
class EnvironmentDecision:
    environment: str
    changed: bool


class RunSummaryStore:
    def __init__(self, path: Path) -> None:
        self.logger = logging.getLogger(__name__)
        self.path = path
        self.store = LocalStateStore(path.parent)

    def read(self) -> RunSummary | None:
        if not self.store.exists(self.path.name):
            return None
        try:
            return RunSummary(**self.store.read_yaml(self.path.name))
        except (OSError, ValueError, TypeError, ValidationError) as exc:
            self.logger.warning("Agent: ignoring unreadable last run summary %s: %s", self.path, exc)
            return None

    def write(
        self,
        *,
        environment: str,
        status: RunStatusState,
        configuration_version: str | None,
        server_used: str | None,
    ) -> None:
        summary = RunSummary(
            environment=environment,
            status=status,
            time=datetime.now(tz=timezone.utc),
            configuration_version=configuration_version,
            server_used=server_used,
        )
        self.store.write_yaml(self.path.name, summary.model_dump(mode="json", exclude_none=True))


class EnvironmentNegotiator:
    def __init__(self, settings: AgentSettings, summaries: RunSummaryStore) -> None:
        self.logger = logging.getLogger(__name__)
        self.settings = settings
        self.summaries = summaries

    def initial_environment(self) -> str:
        environment = self.settings.environment
        if self.settings.use_last_environment:
            summary = self.summaries.read()
            if summary is not None and summary.environment:
                environment = summary.environment
        self.logger.info("Using environment '%s'", environment)
        return environment

    def negotiate(self, assumed: str, catalog: Catalog) -> EnvironmentDecision:
        if catalog.environment == assumed:
            return EnvironmentDecision(environment=assumed, changed=False)
        self.logger.info(
            "Local environment: '%s' doesn't match server specified environment '%s', "
            "restarting agent run with environment '%s'",
            assumed,
            catalog.environment,
            catalog.environment,
        )
        return EnvironmentDecision(environment=catalog.environment, changed=True)
