"""Rich-data parameter values and their lossless wire encoding.

Catalog parameters are plain JSON values plus four tagged kinds:

- `Deferred`: a function call evaluated on the node at apply time, never before.
- `Sensitive`: a wrapper whose text form is always redacted.
- `Binary`: raw bytes, base64 on the wire.
- `ResourceRef`: a `Type[title]` reference to another resource in the same catalog.

Tagged values travel as `{"__ptype": <kind>, ...}` objects. Encoding is the exact
inverse of decoding so a catalog written to the cache reads back unchanged,
Deferred markers included.
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from typing import Any

PTYPE_KEY = "__ptype"
PVALUE_KEY = "__pvalue"
REDACTED_TEXT = "Sensitive [value redacted]"

_REF_PATTERN = re.compile(r"^([A-Za-z][A-Za-z0-9_]*(?:::[A-Za-z0-9_]+)*)\[(.*)\]$", re.DOTALL)


def normalize_type(type_name: str) -> str:
    return "::".join(part.capitalize() for part in type_name.strip().split("::"))


@dataclass(frozen=True)
class ResourceRef:
    type: str
    title: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", normalize_type(self.type))

    @property
    def ref(self) -> str:
        return f"{self.type}[{self.title}]"

    @classmethod
    def parse(cls, text: str) -> "ResourceRef":
        match = _REF_PATTERN.match(text.strip())
        if not match:
            raise ValueError(f"Invalid resource reference: {text!r}")
        return cls(type=match.group(1), title=match.group(2))

    def __str__(self) -> str:
        return self.ref


@dataclass(frozen=True)
class Deferred:
    name: str
    arguments: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return f"Deferred({self.name!r})"


@dataclass(frozen=True)
class Sensitive:
    value: Any

    def unwrap(self) -> Any:
        return self.value

    def __repr__(self) -> str:
        return REDACTED_TEXT

    __str__ = __repr__


@dataclass(frozen=True)
class Binary:
    data: bytes

    @classmethod
    def from_base64(cls, text: str) -> "Binary":
        return cls(base64.b64decode(text.encode("ascii"), validate=True))

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def __str__(self) -> str:
        return self.to_base64()


def decode_value(value: Any) -> Any:
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    if not isinstance(value, dict):
        return value
    ptype = value.get(PTYPE_KEY)
    if ptype is None:
        return {str(key): decode_value(item) for key, item in value.items()}
    if ptype == "Deferred":
        arguments = value.get("arguments") or []
        if not isinstance(arguments, list):
            raise ValueError("Deferred arguments must be a list")
        return Deferred(name=str(value["name"]), arguments=tuple(decode_value(arg) for arg in arguments))
    if ptype == "Sensitive":
        return Sensitive(decode_value(value.get(PVALUE_KEY)))
    if ptype == "Binary":
        return Binary.from_base64(str(value.get(PVALUE_KEY, "")))
    if ptype == "Resource":
        return ResourceRef.parse(str(value.get(PVALUE_KEY, "")))
    raise ValueError(f"Unknown rich data type: {ptype}")


def encode_value(value: Any) -> Any:
    if isinstance(value, Deferred):
        return {PTYPE_KEY: "Deferred", "name": value.name, "arguments": [encode_value(arg) for arg in value.arguments]}
    if isinstance(value, Sensitive):
        return {PTYPE_KEY: "Sensitive", PVALUE_KEY: encode_value(value.value)}
    if isinstance(value, Binary):
        return {PTYPE_KEY: "Binary", PVALUE_KEY: value.to_base64()}
    if isinstance(value, ResourceRef):
        return {PTYPE_KEY: "Resource", PVALUE_KEY: value.ref}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): encode_value(item) for key, item in value.items()}
    return value


def contains_sensitive(value: Any) -> bool:
    if isinstance(value, Sensitive):
        return True
    if isinstance(value, Deferred):
        return any(contains_sensitive(arg) for arg in value.arguments)
    if isinstance(value, (list, tuple)):
        return any(contains_sensitive(item) for item in value)
    if isinstance(value, dict):
        return any(contains_sensitive(item) for item in value.values())
    return False


def unwrap_sensitive(value: Any) -> Any:
    """Strip Sensitive wrappers so providers can act on the real value."""
    if isinstance(value, Sensitive):
        return unwrap_sensitive(value.value)
    if isinstance(value, list):
        return [unwrap_sensitive(item) for item in value]
    if isinstance(value, tuple):
        return tuple(unwrap_sensitive(item) for item in value)
    if isinstance(value, dict):
        return {key: unwrap_sensitive(item) for key, item in value.items()}
    return value
