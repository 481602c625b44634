from __future__ import annotations

from pathlib import Path

import pytest

from fleet_agent.convergence.errors import ResourceError
from fleet_agent.convergence.functions import FunctionRegistry, default_functions
from fleet_agent.convergence.models import Catalog
from fleet_agent.convergence.values import (
    Binary,
    Deferred,
    ResourceRef,
    Sensitive,
    decode_value,
    encode_value,
)


def test_sensitive_never_renders_plaintext() -> None:
    secret = Sensitive("hunter2")

    assert repr(secret) == "Sensitive [value redacted]"
    assert str(secret) == "Sensitive [value redacted]"
    assert f"{secret}" == "Sensitive [value redacted]"
    assert "hunter2" not in repr({"password": secret})
    assert secret.unwrap() == "hunter2"


def test_decode_tagged_values() -> None:
    decoded = decode_value(
        {
            "plain": [1, "two"],
            "blob": {"__ptype": "Binary", "__pvalue": "aGVsbG8="},
            "secret": {"__ptype": "Sensitive", "__pvalue": "s3cret"},
            "peer": {"__ptype": "Resource", "__pvalue": "file[/etc/motd]"},
            "later": {"__ptype": "Deferred", "name": "join", "arguments": [["a", "b"], "-"]},
        }
    )

    assert decoded["plain"] == [1, "two"]
    assert decoded["blob"] == Binary(b"hello")
    assert decoded["secret"].unwrap() == "s3cret"
    assert decoded["peer"] == ResourceRef("File", "/etc/motd")
    assert decoded["later"] == Deferred("join", (["a", "b"], "-"))


def test_unknown_rich_type_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown rich data type: Mystery"):
        decode_value({"__ptype": "Mystery", "__pvalue": 1})


def test_cached_document_keeps_deferred_markers() -> None:
    document = {
        "name": "node1",
        "environment": "production",
        "resources": [
            {
                "type": "file",
                "title": "/tmp/motd",
                "parameters": {"content": {"__ptype": "Deferred", "name": "file", "arguments": ["/etc/issue"]}},
            }
        ],
    }

    catalog = Catalog.from_document(document)
    encoded = catalog.to_document()

    assert catalog.resources[0].type == "File"
    assert isinstance(catalog.resources[0].parameters["content"], Deferred)
    assert encoded["resources"][0]["parameters"]["content"] == {
        "__ptype": "Deferred",
        "name": "file",
        "arguments": ["/etc/issue"],
    }


def test_binary_and_sensitive_encode_back_to_wire_tags() -> None:
    assert encode_value(Binary(b"\x00\x01")) == {"__ptype": "Binary", "__pvalue": "AAE="}
    assert encode_value([Sensitive("x")]) == [{"__ptype": "Sensitive", "__pvalue": "x"}]


def test_deferred_is_evaluated_on_every_call(tmp_path: Path) -> None:
    source = tmp_path / "value.txt"
    functions = default_functions()
    deferred = Deferred("file", (str(source),))

    source.write_text("X1", encoding="utf-8")
    assert functions.evaluate({"content": deferred}) == {"content": "X1"}
    source.write_text("X2", encoding="utf-8")
    assert functions.evaluate({"content": deferred}) == {"content": "X2"}


def test_deferred_with_sensitive_argument_yields_sensitive() -> None:
    functions = default_functions()

    result = functions.evaluate(Deferred("sprintf", ("token=%s", Sensitive("abc"))))

    assert isinstance(result, Sensitive)
    assert result.unwrap() == "token=abc"


def test_unknown_or_failing_function_is_a_resource_error(tmp_path: Path) -> None:
    functions = FunctionRegistry()
    with pytest.raises(ResourceError, match="Unknown function 'nope'"):
        functions.evaluate(Deferred("nope"))

    with pytest.raises(ResourceError, match="Deferred function 'file' failed"):
        default_functions().evaluate(Deferred("file", (str(tmp_path / "missing.txt"),)))
