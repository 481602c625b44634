from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest

from fleet_agent.convergence.errors import ResourceError
from fleet_agent.convergence.executor import TransactionExecutor
from fleet_agent.convergence.functions import default_functions
from fleet_agent.convergence.graph import build_graph
from fleet_agent.convergence.models import ApplyOutcome, Catalog, EventStatus, Resource, RunStatusState
from fleet_agent.convergence.providers import (
    ApplyContext,
    PropertyChange,
    ProviderRegistry,
    ResourceProvider,
    default_registry,
)


class _RecordingProvider(ResourceProvider):
    supports_refresh = True

    def __init__(self, failing: set[str] | None = None, unchanged: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.unchanged = unchanged or set()
        self.applied: list[str] = []
        self.refreshed: list[str] = []

    def current_state(self, resource: Resource, context: ApplyContext) -> dict[str, Any]:
        return {}

    def apply(self, resource: Resource, current: dict[str, Any], context: ApplyContext) -> list[PropertyChange]:
        self.applied.append(resource.title)
        if resource.title in self.failing:
            raise ResourceError(f"boom in {resource.title}")
        if resource.title in self.unchanged:
            return []
        return [PropertyChange("state", "old", "new")]

    def refresh(self, resource: Resource, context: ApplyContext) -> None:
        self.refreshed.append(resource.title)


def _catalog(resources: list[dict[str, Any]]) -> Catalog:
    return Catalog.from_document({"name": "node1", "environment": "production", "resources": resources})


def _thing(title: str, **parameters: Any) -> dict[str, Any]:
    return {"type": "thing", "title": title, "parameters": parameters}


def _run(catalog: Catalog, provider: ResourceProvider):
    registry = ProviderRegistry({"thing": provider})
    graph = build_graph(catalog, registry)
    return TransactionExecutor(default_functions()).apply(graph, ApplyContext())


def test_failure_skips_transitive_dependents_but_not_unrelated() -> None:
    provider = _RecordingProvider(failing={"a"})
    catalog = _catalog(
        [
            _thing("a"),
            _thing("b", require="Thing[a]"),
            _thing("c", require="Thing[b]"),
            _thing("unrelated"),
        ]
    )

    transaction = _run(catalog, provider)
    outcomes = {result.resource: result.outcome for result in transaction.results}

    assert outcomes == {
        "Thing[a]": ApplyOutcome.FAILED,
        "Thing[b]": ApplyOutcome.SKIPPED,
        "Thing[c]": ApplyOutcome.SKIPPED,
        "Thing[unrelated]": ApplyOutcome.APPLIED,
    }
    assert provider.applied == ["a", "unrelated"]
    assert transaction.status == RunStatusState.FAILED
    skipped = [event for event in transaction.events if event.status == EventStatus.SKIPPED]
    assert [event.message for event in skipped] == ["Skipping because of failed dependencies"] * 2


def test_applies_in_dependency_order() -> None:
    provider = _RecordingProvider()
    catalog = _catalog([_thing("second", require="Thing[first]"), _thing("first")])

    transaction = _run(catalog, provider)

    assert provider.applied == ["first", "second"]
    assert transaction.status == RunStatusState.CHANGED


def test_notify_triggers_refresh_only_on_change() -> None:
    provider = _RecordingProvider(unchanged={"quiet", "service"})
    catalog = _catalog(
        [
            _thing("config", notify="Thing[service]"),
            _thing("service"),
            _thing("quiet", notify="Thing[other]"),
            _thing("other"),
        ]
    )

    transaction = _run(catalog, provider)

    assert provider.refreshed == ["service"]
    service = next(result for result in transaction.results if result.resource == "Thing[service]")
    assert service.refreshed is True
    assert service.events[-1].message == "Triggered 'refresh' from 1 event"
    assert service.outcome == ApplyOutcome.UNCHANGED
    assert transaction.status == RunStatusState.CHANGED


def test_all_unchanged_is_unchanged_status() -> None:
    provider = _RecordingProvider(unchanged={"x", "y"})

    transaction = _run(_catalog([_thing("x"), _thing("y")]), provider)

    assert transaction.status == RunStatusState.UNCHANGED
    assert transaction.events == []


def test_file_resource_is_idempotent(tmp_path: Path) -> None:
    target = tmp_path / "motd"
    catalog = _catalog([{"type": "file", "title": str(target), "parameters": {"content": "hello\n"}}])
    executor = TransactionExecutor(default_functions())

    first = executor.apply(build_graph(catalog, default_registry()), ApplyContext())
    second = executor.apply(build_graph(catalog, default_registry()), ApplyContext())

    assert target.read_text(encoding="utf-8") == "hello\n"
    assert first.status == RunStatusState.CHANGED
    assert first.events[0].message == "created"
    assert second.status == RunStatusState.UNCHANGED


def test_sensitive_content_is_redacted_in_events_and_logs(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG)
    target = tmp_path / "secret.conf"
    target.write_text("old\n", encoding="utf-8")
    catalog = Catalog.from_document(
        {
            "name": "node1",
            "environment": "production",
            "resources": [
                {
                    "type": "file",
                    "title": str(target),
                    "parameters": {"content": {"__ptype": "Sensitive", "__pvalue": "p4ssw0rd-xyz"}},
                }
            ],
        }
    )

    transaction = TransactionExecutor(default_functions()).apply(
        build_graph(catalog, default_registry()), ApplyContext()
    )

    assert target.read_text(encoding="utf-8") == "p4ssw0rd-xyz"
    event = transaction.events[0]
    assert event.sensitive is True
    assert event.message == "content changed [redacted] to [redacted]"
    assert "p4ssw0rd-xyz" not in caplog.text


def test_exec_failure_is_contained(tmp_path: Path) -> None:
    catalog = _catalog(
        [
            {"type": "exec", "title": "/bin/false", "parameters": {}},
            {"type": "notify", "title": "after", "parameters": {"require": "Exec[/bin/false]"}},
            {"type": "notify", "title": "independent", "parameters": {}},
        ]
    )

    transaction = TransactionExecutor(default_functions()).apply(
        build_graph(catalog, default_registry()), ApplyContext()
    )

    outcomes = [result.outcome for result in transaction.results]
    assert outcomes == [ApplyOutcome.FAILED, ApplyOutcome.SKIPPED, ApplyOutcome.APPLIED]
    assert "returned 1 instead of one of [0]" in transaction.results[0].events[0].message


def test_failing_deferred_with_sensitive_argument_is_redacted(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG)
    secret_path = tmp_path / "hunter2-secret-path"
    catalog = Catalog.from_document(
        {
            "name": "node1",
            "environment": "production",
            "resources": [
                {
                    "type": "notify",
                    "title": "motd",
                    "parameters": {
                        "message": {
                            "__ptype": "Deferred",
                            "name": "file",
                            "arguments": [{"__ptype": "Sensitive", "__pvalue": str(secret_path)}],
                        }
                    },
                }
            ],
        }
    )

    transaction = TransactionExecutor(default_functions()).apply(
        build_graph(catalog, default_registry()), ApplyContext()
    )

    event = transaction.events[0]
    assert transaction.results[0].outcome == ApplyOutcome.FAILED
    assert event.sensitive is True
    assert "hunter2-secret-path" not in event.message
    assert "[redacted]" in event.message
    assert "hunter2-secret-path" not in caplog.text
