"""Convergence run orchestration (lock -> retrieve -> negotiate -> build -> apply -> report)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .cache import CatalogCache
from .config import AgentSettings
from .environment import EnvironmentNegotiator, RunSummaryStore
from .errors import (
    CatalogValidationError,
    ConvergenceError,
    EnvironmentConvergenceError,
    GraphCycleError,
    TransportTrustError,
)
from .executor import TransactionExecutor
from .facts import FactsProvider, collect_facts
from .functions import FunctionRegistry, default_functions
from .graph import build_graph
from .ids import transaction_uuid as new_transaction_uuid
from .lock import LockState, RunLock
from .logging_utils import RunTranscriptHandler
from .models import Report, RunOutcome, RunStatusState
from .providers import ApplyContext, ProviderRegistry, default_registry
from .report import ReportAssembler
from .retriever import CatalogRetriever, CatalogSource, FileSourceResolver, RetrievedCatalog
from .schemas import SchemaRegistry
from .servers import ServerSelector
from .transport import HttpTransport


@dataclass(frozen=True)
class RunResult:
    outcome: RunOutcome
    report: Report | None = None
    message: str | None = None
    report_path: str | None = None


class ConvergenceAgent:
    MAX_ENVIRONMENT_RESTARTS = 1

    def __init__(
        self,
        settings: AgentSettings,
        *,
        transport: HttpTransport | None = None,
        registry: ProviderRegistry | None = None,
        functions: FunctionRegistry | None = None,
        facts_provider: FactsProvider = collect_facts,
        lock: RunLock | None = None,
        schemas: SchemaRegistry | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.settings = settings
        self.paths = settings.paths()
        self.schemas = schemas or SchemaRegistry()
        self.transport = transport or HttpTransport(
            timeout_seconds=settings.http_timeout_seconds,
            ssl_trust_store=settings.ssl_trust_store,
        )
        self.lock = lock or RunLock(self.paths.lock_file)
        self.cache = CatalogCache(self.paths.cached_catalog, schemas=self.schemas)
        self.selector = ServerSelector(settings, self.transport)
        self.retriever = CatalogRetriever(settings, self.transport, self.cache, schemas=self.schemas)
        self.summaries = RunSummaryStore(self.paths.last_run_summary)
        self.negotiator = EnvironmentNegotiator(settings, self.summaries)
        self.registry = registry or default_registry()
        self.functions = functions or default_functions()
        self.executor = TransactionExecutor(self.functions)
        self.assembler = ReportAssembler(self.paths.last_run_report, enabled=settings.report, schemas=self.schemas)
        self.facts_provider = facts_provider

    def run(self) -> RunResult:
        settings = self.settings
        with self.lock.held(settings.wait_for_lock_seconds, settings.max_wait_for_lock_seconds) as acquisition:
            if acquisition.state == LockState.BUSY:
                return RunResult(
                    RunOutcome.LOCK_CONTENTION,
                    message="Run of configuration client already in progress; skipping",
                )
            if acquisition.state == LockState.TIMED_OUT:
                return RunResult(
                    RunOutcome.LOCK_CONTENTION,
                    message="Exiting now because the maxwaitforlock timeout has been exceeded.",
                )
            return self._converge()

    def _converge(self) -> RunResult:
        transcript = RunTranscriptHandler()
        package_logger = logging.getLogger("fleet_agent")
        package_logger.addHandler(transcript)
        try:
            txn_uuid = new_transaction_uuid()
            try:
                retrieved = self._retrieve(txn_uuid)
            except TransportTrustError as exc:
                self.logger.error("Could not run configuration client: %s", exc)
                return RunResult(RunOutcome.TRANSPORT_OR_TRUST_FAILURE, message=str(exc))
            except ConvergenceError as exc:
                self.logger.error("Could not run configuration client: %s", exc)
                return RunResult(RunOutcome.FAILED, message=str(exc))
            return self._apply(retrieved, txn_uuid, transcript)
        finally:
            package_logger.removeHandler(transcript)

    def _retrieve(self, txn_uuid: str) -> RetrievedCatalog:
        if self.settings.use_cached_catalog:
            cached = self.retriever.cached()
            if cached is not None:
                return cached

        environment = self.negotiator.initial_environment()
        restarts = 0
        while True:
            selection = self.selector.select()
            facts = self.facts_provider(environment)
            retrieved = self.retriever.fetch(selection, environment, facts, txn_uuid)
            if retrieved.source == CatalogSource.CACHE:
                return retrieved
            decision = self.negotiator.negotiate(environment, retrieved.catalog)
            if not decision.changed:
                return retrieved
            if restarts >= self.MAX_ENVIRONMENT_RESTARTS:
                raise EnvironmentConvergenceError(
                    f"Server specified environment '{decision.environment}' after the run was "
                    f"restarted with environment '{environment}'; giving up"
                )
            restarts += 1
            environment = decision.environment

    def _apply(self, retrieved: RetrievedCatalog, txn_uuid: str, transcript: RunTranscriptHandler) -> RunResult:
        catalog = retrieved.catalog
        started = time.monotonic()
        self.logger.info("Applying configuration version '%s'", catalog.version)
        try:
            graph = build_graph(catalog, self.registry)
        except (CatalogValidationError, GraphCycleError) as exc:
            # the cache keeps the last good catalog; only the report records this run
            report = self.assembler.assemble(
                host=self.settings.certname,
                catalog=catalog,
                transaction_uuid=txn_uuid,
                transaction=None,
                server_used=retrieved.server_used,
                cached_status=retrieved.cached_status,
                failure=str(exc),
                logs=transcript.lines,
            )
            return self._finish(report, RunOutcome.FAILED, str(exc))

        context = ApplyContext(files=FileSourceResolver(self.transport, catalog, retrieved.endpoint, self.schemas))
        transaction = self.executor.apply(graph, context)
        if retrieved.source == CatalogSource.SERVER:
            self.cache.save(catalog)
        self.logger.info("Applied catalog in %.2f seconds", time.monotonic() - started)

        report = self.assembler.assemble(
            host=self.settings.certname,
            catalog=catalog,
            transaction_uuid=txn_uuid,
            transaction=transaction,
            server_used=retrieved.server_used,
            cached_status=retrieved.cached_status,
            logs=transcript.lines,
        )
        if report.status == RunStatusState.FAILED:
            outcome = RunOutcome.FAILED
        elif report.status == RunStatusState.CHANGED:
            outcome = RunOutcome.APPLIED_WITH_CHANGES
        else:
            outcome = RunOutcome.NO_CHANGES
        return self._finish(report, outcome, None)

    def _finish(self, report: Report, outcome: RunOutcome, message: str | None) -> RunResult:
        ref = self.assembler.persist(report)
        self.summaries.write(
            environment=report.environment,
            status=report.status,
            configuration_version=report.configuration_version,
            server_used=report.server_used,
        )
        return RunResult(outcome, report, message, ref.path if ref else None)
