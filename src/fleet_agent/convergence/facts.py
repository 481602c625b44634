"""Default node facts sent with catalog requests."""

from __future__ import annotations

import os
import platform
import socket
from collections.abc import Callable
from typing import Any

FactsProvider = Callable[[str], dict[str, Any]]


def collect_facts(environment: str) -> dict[str, Any]:
    """Minimal fact set; called again after an environment restart."""
    hostname = socket.gethostname()
    return {
        "hostname": hostname.split(".")[0],
        "fqdn": socket.getfqdn(),
        "kernel": platform.system(),
        "kernelrelease": platform.release(),
        "architecture": platform.machine(),
        "python_version": platform.python_version(),
        "agent_environment": environment,
        "path": os.environ.get("PATH", ""),
    }
