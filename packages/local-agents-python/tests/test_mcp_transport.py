from __future__ import annotations

import io
import json

import pytest

from local_agents.mcp.protocol import CallToolResult, error_response, success_response
from local_agents.mcp.transport import OVERSIZED, LineTransport


def test_read_message_binary_lines_and_eof() -> None:
    reader = io.BytesIO(b'{"a":1}\r\n\n{"b":"\xc3\xa9"}')
    t = LineTransport(reader, io.BytesIO())

    assert t.read_message() == '{"a":1}'
    assert t.read_message() == ""
    assert t.read_message() == '{"b":"é"}'
    assert t.read_message() is None


def test_read_message_oversized_line_is_drained() -> None:
    reader = io.BytesIO(b"x" * 50 + b"\nok\n")
    t = LineTransport(reader, io.BytesIO(), max_message_bytes=10)

    assert t.read_message() is OVERSIZED
    assert t.read_message() == "ok"
    assert t.read_message() is None


def test_line_exactly_at_limit_is_accepted() -> None:
    t = LineTransport(io.BytesIO(b"0123456789\n"), io.BytesIO(), max_message_bytes=10)
    assert t.read_message() == "0123456789"


def test_write_message_is_one_compact_line() -> None:
    out = io.BytesIO()
    LineTransport(io.BytesIO(), out).write_message({"id": 1, "text": "多行\n文本"})

    raw = out.getvalue().decode("utf-8")
    assert raw.endswith("\n")
    assert raw.count("\n") == 1
    assert json.loads(raw) == {"id": 1, "text": "多行\n文本"}

    text_out = io.StringIO()
    LineTransport(io.StringIO(), text_out).write_message({"ok": True})
    assert text_out.getvalue() == '{"ok":true}\n'


def test_transport_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        LineTransport(io.BytesIO(), io.BytesIO(), max_message_bytes=0)


def test_response_builders() -> None:
    assert success_response(7, {}) == {"jsonrpc": "2.0", "id": 7, "result": {}}
    assert error_response(None, -32700, "Parse error") == {
        "jsonrpc": "2.0",
        "id": None,
        "error": {"code": -32700, "message": "Parse error"},
    }
    assert error_response(1, -32602, "Invalid params", "x")["error"]["data"] == "x"
    assert CallToolResult.error("nope").to_wire() == {"content": [{"type": "text", "text": "Error: nope"}], "isError": True}
