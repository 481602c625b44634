"""Report assembly and persistence."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from .executor import ResourceEvent, TransactionResult
from .models import (
    ApplyOutcome,
    CachedCatalogStatus,
    Catalog,
    Report,
    ReportEvent,
    ReportMetrics,
    RunStatusState,
)
from .schemas import SchemaRegistry
from .security import REDACTED, render_value
from .storage import ArtifactRef, LocalStateStore


class ReportAssembler:
    def __init__(self, report_path: Path, *, enabled: bool = True, schemas: SchemaRegistry | None = None) -> None:
        self.logger = logging.getLogger(__name__)
        self.report_path = report_path
        self.enabled = enabled
        self.schemas = schemas
        self.store = LocalStateStore(report_path.parent)

    def assemble(
        self,
        *,
        host: str,
        catalog: Catalog,
        transaction_uuid: str,
        transaction: TransactionResult | None,
        server_used: str | None,
        cached_status: CachedCatalogStatus = CachedCatalogStatus.NOT_USED,
        failure: str | None = None,
        logs: list[str] | None = None,
    ) -> Report:
        """Fold the transaction into a report.

        `transaction` is None when the catalog never reached the executor (invalid
        graph); such a report is `failed` and carries the failure as a log line.
        `server_used` must already be None unless a server list was used.
        """
        results = transaction.results if transaction is not None else []
        counts = transaction.counts() if transaction is not None else {}
        events = [self._report_event(event) for result in results for event in result.events]
        metrics = ReportMetrics(
            resources_total=len(catalog.resources),
            changed=counts.get(ApplyOutcome.APPLIED, 0),
            failed=counts.get(ApplyOutcome.FAILED, 0),
            skipped=counts.get(ApplyOutcome.SKIPPED, 0),
            refreshed=sum(1 for result in results if result.refreshed),
            events_total=len(events),
        )
        if transaction is None or failure:
            status = RunStatusState.FAILED
        else:
            status = transaction.status
        log_lines = list(logs or [])
        if failure:
            log_lines.append(f"ERROR: {failure}")
        return Report(
            host=host,
            environment=catalog.environment,
            transaction_uuid=transaction_uuid,
            status=status,
            time=datetime.now(tz=timezone.utc),
            configuration_version=catalog.version,
            server_used=server_used,
            cached_catalog_status=cached_status,
            events=events,
            metrics=metrics,
            logs=log_lines,
        )

    def persist(self, report: Report) -> ArtifactRef | None:
        if not self.enabled:
            self.logger.debug("Report: reporting disabled; not writing %s", self.report_path)
            return None
        payload = report.model_dump(mode="json", exclude_none=True)
        if self.schemas is not None:
            self.schemas.validate("report.schema.yaml", payload)
        ref = self.store.write_yaml(self.report_path.name, payload)
        self.logger.info("Report: stored last run report %s (status=%s)", ref.path, report.status.value)
        return ref

    def _report_event(self, event: ResourceEvent) -> ReportEvent:
        if event.sensitive:
            previous = REDACTED if event.property else None
            desired = REDACTED if event.property else None
        else:
            previous = None if event.property is None else render_value(event.previous)
            desired = None if event.property is None else render_value(event.desired)
        return ReportEvent(
            resource=event.resource,
            status=event.status,
            message=event.message,
            property=event.property,
            previous_value=previous,
            desired_value=desired,
            sensitive=event.sensitive,
        )
