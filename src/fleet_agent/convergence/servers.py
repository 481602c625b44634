"""Server selection across an ordered candidate list."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import AgentSettings
from .errors import ConvergenceError, HttpStatusError, NoFunctionalServerError, ServerUnreachableError
from .transport import HttpTransport

STATUS_PATH = "/status/v1/simple/server"
API_PREFIX = "/agent/v1"


@dataclass(frozen=True)
class ServerEndpoint:
    host: str
    port: int

    @classmethod
    def parse(cls, entry: str, default_port: int) -> "ServerEndpoint":
        text = entry.strip()
        if not text:
            raise ValueError("empty server entry")
        host, sep, port = text.rpartition(":")
        if sep and port.isdigit() and host and not host.endswith(":"):
            return cls(host=host.strip("[]"), port=int(port))
        return cls(host=text.strip("[]"), port=default_port)

    @property
    def label(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def base_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"https://{host}:{self.port}"

    @property
    def api_url(self) -> str:
        return self.base_url + API_PREFIX

    @property
    def status_url(self) -> str:
        return self.base_url + STATUS_PATH


@dataclass(frozen=True)
class ServerSelection:
    endpoint: ServerEndpoint
    from_list: bool

    @property
    def server_used(self) -> str | None:
        return self.endpoint.label if self.from_list else None


class ServerSelector:
    def __init__(self, settings: AgentSettings, transport: HttpTransport) -> None:
        self.logger = logging.getLogger(__name__)
        self.settings = settings
        self.transport = transport

    def candidates(self) -> list[ServerEndpoint]:
        return [ServerEndpoint.parse(entry, self.settings.server_port) for entry in self.settings.server_list]

    def select(self) -> ServerSelection:
        if not self.settings.server_list:
            if not self.settings.server:
                raise ConvergenceError("No server configured: set server or server_list")
            endpoint = ServerEndpoint.parse(self.settings.server, self.settings.server_port)
            self.logger.debug("Resolved service to %s", endpoint.api_url)
            return ServerSelection(endpoint=endpoint, from_list=False)

        for endpoint in self.candidates():
            if self._probe(endpoint):
                self.logger.debug("Resolved service to %s", endpoint.api_url)
                self.logger.info("Selected server %s from server_list", endpoint.label)
                return ServerSelection(endpoint=endpoint, from_list=True)
        raise NoFunctionalServerError(list(self.settings.server_list))

    def _probe(self, endpoint: ServerEndpoint) -> bool:
        try:
            self.transport.get(endpoint.status_url, accept="text/plain")
        except (ServerUnreachableError, HttpStatusError):
            self.logger.warning(
                "Unable to connect to server from server_list setting: Request to %s failed",
                endpoint.status_url,
            )
            return False
        return True
