"""Deferred function registry, evaluated on the node at apply time.

Nothing here memoises: every call re-reads its inputs, so a cached catalog whose
Deferred value reads a file yields the file's current content on each run.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .errors import ResourceError
from .values import Binary, Deferred, Sensitive, contains_sensitive, unwrap_sensitive

DeferredFunction = Callable[..., Any]


def _join(values: list[Any], separator: str = "") -> str:
    return str(separator).join(str(value) for value in values)


def _sprintf(template: str, *args: Any) -> str:
    return str(template) % tuple(args)


def _file(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def _binary_file(path: str) -> Binary:
    return Binary(Path(path).read_bytes())


def _env(name: str, default: Any = None) -> Any:
    return os.environ.get(name, default)


class FunctionRegistry:
    def __init__(self, functions: dict[str, DeferredFunction] | None = None) -> None:
        self._functions: dict[str, DeferredFunction] = dict(functions or {})

    def register(self, name: str, function: DeferredFunction) -> None:
        self._functions[name] = function

    def has(self, name: str) -> bool:
        return name in self._functions

    def call(self, name: str, arguments: list[Any]) -> Any:
        function = self._functions.get(name)
        if function is None:
            raise ResourceError(f"Unknown function '{name}' in Deferred value")
        try:
            return function(*arguments)
        except ResourceError:
            raise
        except (OSError, TypeError, ValueError, KeyError) as exc:
            raise ResourceError(f"Deferred function '{name}' failed: {exc}") from exc

    def evaluate(self, value: Any) -> Any:
        """Resolve every Deferred inside `value`; Sensitive wrappers are preserved."""
        if isinstance(value, Deferred):
            arguments = [self.evaluate(argument) for argument in value.arguments]
            if contains_sensitive(arguments):
                return Sensitive(self.call(value.name, unwrap_sensitive(arguments)))
            return self.call(value.name, arguments)
        if isinstance(value, Sensitive):
            return Sensitive(self.evaluate(value.value))
        if isinstance(value, list):
            return [self.evaluate(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.evaluate(item) for item in value)
        if isinstance(value, dict):
            return {key: self.evaluate(item) for key, item in value.items()}
        return value


def default_functions() -> FunctionRegistry:
    return FunctionRegistry(
        {
            "join": _join,
            "sprintf": _sprintf,
            "file": _file,
            "binary_file": _binary_file,
            "env": _env,
        }
    )
