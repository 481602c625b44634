from __future__ import annotations

import logging
from pathlib import Path

import pytest
import requests

from fleet_agent.convergence.config import AgentSettings
from fleet_agent.convergence.errors import (
    ConvergenceError,
    HttpStatusError,
    NoFunctionalServerError,
    ServerUnreachableError,
    TransportTrustError,
)
from fleet_agent.convergence.servers import ServerEndpoint, ServerSelector
from fleet_agent.convergence.transport import HttpTransport


class _StubResponse:
    def __init__(self, status_code: int = 200, body: object = None, text: str = "") -> None:
        self.status_code = status_code
        self._body = body if body is not None else {}
        self.text = text
        self.content = text.encode("utf-8")

    def json(self) -> object:
        return self._body


class _StubSession:
    def __init__(self, routes: dict[str, object]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def request(self, method: str, url: str, **kwargs: object) -> object:
        self.calls.append((method, url, kwargs))
        outcome = self.routes.get(url)
        if outcome is None:
            raise requests.ConnectionError(f"connection refused: {url}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _selector(tmp_path: Path, session: _StubSession, **settings: object) -> ServerSelector:
    agent_settings = AgentSettings(certname="node1.example.com", state_dir=str(tmp_path), **settings)
    transport = HttpTransport(timeout_seconds=5, session=session)  # type: ignore[arg-type]
    return ServerSelector(agent_settings, transport)


def test_endpoint_parsing_uses_default_port() -> None:
    assert ServerEndpoint.parse("good.example.com", 8140).label == "good.example.com:8140"
    assert ServerEndpoint.parse("good.example.com:9000", 8140).port == 9000
    endpoint = ServerEndpoint.parse("good.example.com", 8140)
    assert endpoint.status_url == "https://good.example.com:8140/status/v1/simple/server"
    assert endpoint.api_url == "https://good.example.com:8140/agent/v1"


def test_first_responsive_server_wins_and_is_recorded(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    session = _StubSession({"https://good.example.com:8140/status/v1/simple/server": _StubResponse(text="running")})
    selector = _selector(tmp_path, session, server_list="bad.example.com,good.example.com,later.example.com")

    selection = selector.select()

    assert selection.server_used == "good.example.com:8140"
    probed = [url for _, url, _ in session.calls]
    assert probed == [
        "https://bad.example.com:8140/status/v1/simple/server",
        "https://good.example.com:8140/status/v1/simple/server",
    ]
    assert (
        "Unable to connect to server from server_list setting: "
        "Request to https://bad.example.com:8140/status/v1/simple/server failed"
    ) in caplog.text


def test_http_error_status_also_disqualifies_a_candidate(tmp_path: Path) -> None:
    session = _StubSession(
        {
            "https://one.example.com:8140/status/v1/simple/server": _StubResponse(503, text="maintenance"),
            "https://two.example.com:8141/status/v1/simple/server": _StubResponse(text="running"),
        }
    )
    selector = _selector(tmp_path, session, server_list=["one.example.com", "two.example.com:8141"])

    assert selector.select().endpoint.label == "two.example.com:8141"


def test_exhausted_server_list_names_every_entry(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    session = _StubSession({})
    selector = _selector(tmp_path, session, server_list="bad1.example.com,bad2.example.com")

    with pytest.raises(NoFunctionalServerError) as excinfo:
        selector.select()

    assert str(excinfo.value) == (
        "Could not select a functional server from server_list: 'bad1.example.com,bad2.example.com'"
    )
    assert caplog.text.count("Unable to connect to server from server_list setting") == 2


def test_single_server_is_not_probed_and_not_recorded(tmp_path: Path) -> None:
    session = _StubSession({})
    selector = _selector(tmp_path, session, server="single.example.com")

    selection = selector.select()

    assert session.calls == []
    assert selection.server_used is None
    assert selection.endpoint.label == "single.example.com:8140"


def test_no_server_configured_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConvergenceError, match="No server configured"):
        _selector(tmp_path, _StubSession({})).select()


def test_tls_failure_during_probe_is_a_trust_failure(tmp_path: Path) -> None:
    session = _StubSession(
        {"https://good.example.com:8140/status/v1/simple/server": requests.exceptions.SSLError("bad cert")}
    )
    selector = _selector(tmp_path, session, server_list="good.example.com")

    with pytest.raises(TransportTrustError, match="certificate verify failed"):
        selector.select()


def test_transport_maps_failures_and_passes_trust_store(tmp_path: Path) -> None:
    bundle = tmp_path / "ca.pem"
    bundle.write_text("-----BEGIN CERTIFICATE-----\n", encoding="utf-8")
    session = _StubSession(
        {
            "https://ok.example.com/x": _StubResponse(body={"ok": True}),
            "https://missing.example.com/x": _StubResponse(404, text="not found"),
            "https://slow.example.com/x": requests.Timeout("slow"),
            "https://list.example.com/x": _StubResponse(body=[1, 2]),
        }
    )
    transport = HttpTransport(timeout_seconds=3, ssl_trust_store=str(bundle), session=session)  # type: ignore[arg-type]

    assert transport.get_json("https://ok.example.com/x") == {"ok": True}
    assert session.calls[0][2]["verify"] == str(bundle)
    assert session.calls[0][2]["timeout"] == 3
    with pytest.raises(HttpStatusError) as excinfo:
        transport.get_json("https://missing.example.com/x")
    assert excinfo.value.status_code == 404
    with pytest.raises(ServerUnreachableError, match="timed out"):
        transport.get_json("https://slow.example.com/x")
    with pytest.raises(HttpStatusError, match="not a JSON object"):
        transport.get_json("https://list.example.com/x")


def test_missing_trust_store_is_a_trust_failure(tmp_path: Path) -> None:
    transport = HttpTransport(ssl_trust_store=str(tmp_path / "absent.pem"), session=_StubSession({}))  # type: ignore[arg-type]

    with pytest.raises(TransportTrustError, match="ssl_trust_store does not exist"):
        transport.get("https://good.example.com:8140/status/v1/simple/server")
