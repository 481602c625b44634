"""Resource provider capabilities and the type-name registry.

A provider implements one resource type through a fixed capability set: validate
the resource, read its current state, apply the desired state, and (optionally)
refresh. The executor never dispatches on anything but the provider resolved for
the resource when the graph was built.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import ResourceError
from .ids import checksum_for, sha256_checksum, split_checksum
from .models import Resource
from .security import REDACTED, collect_secrets, redact_message
from .storage import LocalStateStore
from .values import Binary, Sensitive, contains_sensitive, unwrap_sensitive

if TYPE_CHECKING:
    from .retriever import FileSourceResolver


@dataclass(frozen=True)
class PropertyChange:
    property: str
    previous: Any
    desired: Any
    message: str | None = None
    sensitive: bool = False


@dataclass(frozen=True)
class ApplyContext:
    files: FileSourceResolver | None = None
    exec_timeout_seconds: float | None = 300


class ResourceProvider:
    supports_refresh = False

    def validate(self, resource: Resource) -> list[str]:
        return []

    def current_state(self, resource: Resource, context: ApplyContext) -> dict[str, Any]:
        raise NotImplementedError

    def apply(self, resource: Resource, current: dict[str, Any], context: ApplyContext) -> list[PropertyChange]:
        raise NotImplementedError

    def refresh(self, resource: Resource, context: ApplyContext) -> None:
        return None


class NotifyProvider(ResourceProvider):
    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)

    def current_state(self, resource: Resource, context: ApplyContext) -> dict[str, Any]:
        return {"message": None}

    def apply(self, resource: Resource, current: dict[str, Any], context: ApplyContext) -> list[PropertyChange]:
        message = resource.parameter("message", resource.title)
        self.logger.info("%s", message)
        return [PropertyChange("message", current.get("message"), message)]


class ExecProvider(ResourceProvider):
    supports_refresh = True

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)

    def validate(self, resource: Resource) -> list[str]:
        raw_command = resource.parameter("command", resource.title)
        command = unwrap_sensitive(raw_command)
        if not isinstance(command, str) or not command.strip():
            return [f"Validation of {resource.ref} failed: command must be a non-empty string"]
        try:
            executable = shlex.split(command)[0]
        except ValueError as exc:
            return [f"Validation of {resource.ref} failed: {redact_message(str(exc), collect_secrets(raw_command))}"]
        if not os.path.isabs(executable) and not resource.parameter("path"):
            label = REDACTED if contains_sensitive(raw_command) else executable
            return [f"Validation of {resource.ref} failed: '{label}' is not qualified and no path was specified"]
        return []

    def current_state(self, resource: Resource, context: ApplyContext) -> dict[str, Any]:
        creates = resource.parameter("creates")
        if creates and Path(str(creates)).exists():
            return {"returns": 0}
        return {"returns": "notrun"}

    def apply(self, resource: Resource, current: dict[str, Any], context: ApplyContext) -> list[PropertyChange]:
        if resource.parameter("refreshonly") or current.get("returns") == 0:
            return []
        returncode = self._run(resource, context)
        return [PropertyChange("returns", "notrun", returncode, message="executed successfully")]

    def refresh(self, resource: Resource, context: ApplyContext) -> None:
        self._run(resource, context)

    def _run(self, resource: Resource, context: ApplyContext) -> int:
        raw_command = resource.parameter("command", resource.title)
        command = unwrap_sensitive(raw_command)
        env = os.environ.copy()
        search_path = resource.parameter("path")
        if search_path:
            env["PATH"] = ":".join(search_path) if isinstance(search_path, list) else str(search_path)
        expected = resource.parameter("returns", [0])
        expected_codes = [int(code) for code in (expected if isinstance(expected, list) else [expected])]
        label = REDACTED if contains_sensitive(raw_command) else command
        try:
            result = subprocess.run(
                shlex.split(command),
                cwd=resource.parameter("cwd"),
                env=env,
                capture_output=True,
                text=True,
                timeout=context.exec_timeout_seconds,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ResourceError(f"Could not find command '{label}'") from exc
        except subprocess.TimeoutExpired as exc:
            raise ResourceError(f"Command exceeded timeout: '{label}'") from exc
        if result.returncode not in expected_codes:
            raise ResourceError(f"'{label}' returned {result.returncode} instead of one of {expected_codes}")
        return result.returncode


class FileProvider(ResourceProvider):
    _ENSURE = {"file", "present", "absent"}

    def validate(self, resource: Resource) -> list[str]:
        problems: list[str] = []
        path = str(resource.parameter("path", resource.title))
        if not os.path.isabs(path):
            problems.append(f"Validation of {resource.ref} failed: File paths must be fully qualified, not '{path}'")
        if resource.parameter("content") is not None and resource.parameter("source") is not None:
            problems.append(f"Validation of {resource.ref} failed: You cannot specify more than one of content, source")
        ensure = str(resource.parameter("ensure", "file"))
        if ensure not in self._ENSURE:
            problems.append(f"Validation of {resource.ref} failed: Invalid value '{ensure}' for ensure")
        return problems

    def current_state(self, resource: Resource, context: ApplyContext) -> dict[str, Any]:
        path = Path(str(resource.parameter("path", resource.title)))
        if not path.is_file():
            return {"ensure": "absent", "content": None}
        return {"ensure": "file", "content": path.read_bytes()}

    def apply(self, resource: Resource, current: dict[str, Any], context: ApplyContext) -> list[PropertyChange]:
        path = Path(str(resource.parameter("path", resource.title)))
        ensure = str(resource.parameter("ensure", "file"))
        if ensure == "absent":
            if current["ensure"] == "absent":
                return []
            path.unlink()
            return [PropertyChange("ensure", "file", "absent", message="removed")]

        sensitive = contains_sensitive(resource.parameter("content"))
        desired = self._desired_content(resource, path, current, context)
        if desired is None:
            if current["ensure"] == "absent":
                self._write(path, b"")
                return [PropertyChange("ensure", "absent", "file", message="created")]
            return []
        if current["ensure"] == "absent":
            self._write(path, desired)
            return [PropertyChange("ensure", "absent", "file", message="created", sensitive=sensitive)]
        old_checksum = sha256_checksum(current["content"])
        new_checksum = sha256_checksum(desired)
        if old_checksum == new_checksum:
            return []
        self._write(path, desired)
        return [
            PropertyChange(
                "content",
                old_checksum,
                new_checksum,
                message=f"content changed '{old_checksum}' to '{new_checksum}'",
                sensitive=sensitive,
            )
        ]

    def _desired_content(
        self,
        resource: Resource,
        path: Path,
        current: dict[str, Any],
        context: ApplyContext,
    ) -> bytes | None:
        content = resource.parameter("content")
        if content is not None:
            return _as_bytes(unwrap_sensitive(content))
        source = resource.parameter("source")
        if source is None:
            return None
        if context.files is None:
            raise ResourceError(f"No file source resolver available for {source}")
        resolved = context.files.resolve(str(path), str(source))
        if current["content"] is not None:
            algorithm, _ = split_checksum(resolved.metadata.checksum)
            if checksum_for(current["content"], algorithm) == resolved.metadata.checksum:
                return current["content"]
        return resolved.fetch_content()

    def _write(self, path: Path, content: bytes) -> None:
        LocalStateStore(path.parent).write_bytes(path.name, content)


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, Binary):
        return value.data
    if isinstance(value, bytes):
        return value
    if isinstance(value, Sensitive):
        return _as_bytes(value.unwrap())
    return str(value).encode("utf-8")


class ProviderRegistry:
    def __init__(self, providers: dict[str, ResourceProvider] | None = None) -> None:
        self._providers: dict[str, ResourceProvider] = {}
        for type_name, provider in (providers or {}).items():
            self.register(type_name, provider)

    def register(self, type_name: str, provider: ResourceProvider) -> None:
        self._providers[type_name.lower()] = provider

    def lookup(self, type_name: str) -> ResourceProvider | None:
        return self._providers.get(type_name.lower())


def default_registry() -> ProviderRegistry:
    return ProviderRegistry(
        {
            "notify": NotifyProvider(),
            "exec": ExecProvider(),
            "file": FileProvider(),
        }
    )
