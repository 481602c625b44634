"""Transaction executor: applies a resource graph in dependency order."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from .functions import FunctionRegistry
from .graph import ResourceGraph
from .models import ApplyOutcome, EventStatus, Resource, RunStatusState
from .providers import ApplyContext, PropertyChange, ResourceProvider
from .security import REDACTED, collect_secrets, redact_message, render_value
from .values import contains_sensitive


@dataclass(frozen=True)
class ResourceEvent:
    resource: str
    status: EventStatus
    message: str
    property: str | None = None
    previous: Any = None
    desired: Any = None
    sensitive: bool = False


@dataclass(frozen=True)
class ResourceResult:
    resource: str
    outcome: ApplyOutcome
    events: tuple[ResourceEvent, ...] = ()
    refreshed: bool = False


@dataclass
class TransactionResult:
    results: list[ResourceResult] = field(default_factory=list)

    @property
    def events(self) -> list[ResourceEvent]:
        return [event for result in self.results for event in result.events]

    def counts(self) -> Counter:
        return Counter(result.outcome for result in self.results)

    @property
    def status(self) -> RunStatusState:
        counts = self.counts()
        if counts[ApplyOutcome.FAILED]:
            return RunStatusState.FAILED
        if counts[ApplyOutcome.APPLIED]:
            return RunStatusState.CHANGED
        return RunStatusState.UNCHANGED


class TransactionExecutor:
    """Sequential, single-threaded apply.

    Each step yields an explicit `ResourceResult`; provider exceptions are contained
    at the resource boundary. A failed resource blocks its transitive dependents
    (they are reported as skipped) while unrelated branches keep going. Upstream
    changes along notify/subscribe edges schedule a refresh that runs after the
    downstream resource's own apply.
    """

    def __init__(self, functions: FunctionRegistry) -> None:
        self.logger = logging.getLogger(__name__)
        self.functions = functions

    def apply(self, graph: ResourceGraph, context: ApplyContext) -> TransactionResult:
        transaction = TransactionResult()
        blocked: dict[int, str] = {}
        pending_refresh: Counter = Counter()
        for index in graph.order:
            resource = graph.resources[index]
            provider = graph.providers[index]
            if index in blocked:
                result = self._skip(resource, blocked[index])
            else:
                result = self._apply_resource(resource, provider, context)
                if result.outcome != ApplyOutcome.FAILED and pending_refresh[index] and provider.supports_refresh:
                    result = self._refresh(resource, provider, context, result, pending_refresh[index])
            transaction.results.append(result)

            if result.outcome == ApplyOutcome.FAILED:
                for dependent in graph.dependents(index):
                    blocked.setdefault(dependent, resource.ref)
            elif result.outcome == ApplyOutcome.APPLIED:
                for target in graph.refresh_targets[index]:
                    pending_refresh[target] += 1
        self.logger.info(
            "Transaction: applied=%d unchanged=%d failed=%d skipped=%d",
            transaction.counts()[ApplyOutcome.APPLIED],
            transaction.counts()[ApplyOutcome.UNCHANGED],
            transaction.counts()[ApplyOutcome.FAILED],
            transaction.counts()[ApplyOutcome.SKIPPED],
        )
        return transaction

    def _apply_resource(self, resource: Resource, provider: ResourceProvider, context: ApplyContext) -> ResourceResult:
        secrets = collect_secrets(resource.parameters)
        try:
            # deferred values are evaluated here, on every run
            evaluated = Resource(resource.type, resource.title, self.functions.evaluate(resource.parameters))
            secrets += collect_secrets(evaluated.parameters)
            current = provider.current_state(evaluated, context)
            changes = provider.apply(evaluated, current, context)
        except Exception as exc:
            return self._failure(resource, exc, secrets)
        events = tuple(self._change_event(resource.ref, change) for change in changes)
        for event in events:
            self.logger.info("%s/%s: %s", resource.ref, event.property, event.message)
        outcome = ApplyOutcome.APPLIED if events else ApplyOutcome.UNCHANGED
        return ResourceResult(resource.ref, outcome, events)

    def _refresh(
        self,
        resource: Resource,
        provider: ResourceProvider,
        context: ApplyContext,
        result: ResourceResult,
        upstream_changes: int,
    ) -> ResourceResult:
        secrets = collect_secrets(resource.parameters)
        try:
            evaluated = Resource(resource.type, resource.title, self.functions.evaluate(resource.parameters))
            secrets += collect_secrets(evaluated.parameters)
            provider.refresh(evaluated, context)
        except Exception as exc:
            failed = self._failure(resource, exc, secrets)
            return ResourceResult(resource.ref, ApplyOutcome.FAILED, result.events + failed.events)
        noun = "event" if upstream_changes == 1 else "events"
        message = f"Triggered 'refresh' from {upstream_changes} {noun}"
        self.logger.info("%s: %s", resource.ref, message)
        event = ResourceEvent(resource.ref, EventStatus.REFRESH, message)
        return ResourceResult(resource.ref, result.outcome, result.events + (event,), refreshed=True)

    def _skip(self, resource: Resource, failed_dependency: str) -> ResourceResult:
        self.logger.warning("%s: Dependency %s has failures: true", resource.ref, failed_dependency)
        self.logger.warning("%s: Skipping because of failed dependencies", resource.ref)
        event = ResourceEvent(resource.ref, EventStatus.SKIPPED, "Skipping because of failed dependencies")
        return ResourceResult(resource.ref, ApplyOutcome.SKIPPED, (event,))

    def _failure(self, resource: Resource, exc: Exception, secrets: list[Any]) -> ResourceResult:
        message = redact_message(str(exc), secrets) or exc.__class__.__name__
        self.logger.error("%s: %s", resource.ref, message)
        event = ResourceEvent(resource.ref, EventStatus.FAILURE, message, sensitive=bool(secrets))
        return ResourceResult(resource.ref, ApplyOutcome.FAILED, (event,))

    def _change_event(self, ref: str, change: PropertyChange) -> ResourceEvent:
        sensitive = change.sensitive or contains_sensitive(change.previous) or contains_sensitive(change.desired)
        if sensitive and change.property != "ensure":
            message = f"changed {REDACTED} to {REDACTED}"
            if change.property == "content":
                message = f"content {message}"
        elif change.message:
            message = change.message
        elif change.previous is None:
            message = f"defined '{change.property}' as '{render_value(change.desired)}'"
        else:
            message = f"changed '{render_value(change.previous)}' to '{render_value(change.desired)}'"
        return ResourceEvent(
            resource=ref,
            status=EventStatus.SUCCESS,
            message=message,
            property=change.property,
            previous=change.previous,
            desired=change.desired,
            sensitive=sensitive,
        )
