"""Failure taxonomy for convergence runs."""

from __future__ import annotations


class ConvergenceError(RuntimeError):
    """Base class for run-level failures."""


class ServerUnreachableError(ConvergenceError):
    """A single server could not be contacted (connection refused, timeout, DNS)."""


class NoFunctionalServerError(ConvergenceError):
    def __init__(self, servers: list[str]) -> None:
        self.servers = list(servers)
        joined = ",".join(self.servers)
        super().__init__(f"Could not select a functional server from server_list: '{joined}'")


class TransportTrustError(ConvergenceError):
    """TLS verification of a peer failed."""


class HttpStatusError(ConvergenceError):
    def __init__(self, url: str, status_code: int, body: str = "") -> None:
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(f"Request to {url} failed: http_{status_code} {body}".strip())


class CatalogUnavailableError(ConvergenceError):
    """No catalog could be obtained from a server or the cache."""


class EnvironmentConvergenceError(ConvergenceError):
    """The server kept changing its mind about the node environment."""


class CatalogValidationError(ConvergenceError):
    def __init__(self, messages: list[str]) -> None:
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


class GraphCycleError(ConvergenceError):
    def __init__(self, cycles: list[list[str]]) -> None:
        self.cycles = [list(cycle) for cycle in cycles]
        rendered = "; ".join("(" + " => ".join(cycle) + ")" for cycle in self.cycles)
        noun = "cycle" if len(self.cycles) == 1 else "cycles"
        super().__init__(f"Found {len(self.cycles)} dependency {noun}: {rendered}")


class ResourceError(RuntimeError):
    """Raised by providers; contained at the resource boundary."""


class FileSourceError(ResourceError):
    pass
