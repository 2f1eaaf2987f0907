from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from local_agents.core.errors import PathEscapeError, ToolArgumentError, UnknownToolError
from local_agents.sandbox import WorkspaceSandbox
from local_agents.tools import builtin_tool_names, create_tools, tool_parameters
from local_agents.tools.protocol import Tool, ToolSpec, tool_spec_to_openai_tool
from local_agents.tools.registry import build_tool_definitions


def _sandbox(tmp_path: Path) -> WorkspaceSandbox:
    ws = tmp_path / "ws"
    ws.mkdir(parents=True, exist_ok=True)
    return WorkspaceSandbox(ws)


def _by_name(tools: list, name: str):  # type: ignore[no-untyped-def]
    for t in tools:
        if t.name == name:
            return t
    raise AssertionError(f"tool not found: {name}")


def test_builtin_tool_names_are_the_static_five() -> None:
    assert builtin_tool_names() == ["read", "write", "glob", "grep", "shell"]


def test_create_tools_preserves_order_and_satisfies_protocol(tmp_path: Path) -> None:
    tools = create_tools(_sandbox(tmp_path), ["grep", "read"])
    assert [t.name for t in tools] == ["grep", "read"]
    assert all(isinstance(t, Tool) for t in tools)


def test_create_tools_unknown_name_fails(tmp_path: Path) -> None:
    with pytest.raises(UnknownToolError) as ei:
        create_tools(_sandbox(tmp_path), ["read", "teleport"])
    assert str(ei.value) == "unknown tool: teleport"


def test_tool_parameters_known_and_unknown() -> None:
    read = tool_parameters("read")
    assert read["required"] == ["path"]
    assert read["properties"]["path"]["type"] == "string"
    assert tool_parameters("write")["required"] == ["path", "content"]
    assert tool_parameters("grep")["required"] == ["pattern"]
    assert tool_parameters("nope") == {"type": "object"}


def test_build_tool_definitions_and_openai_shape(tmp_path: Path) -> None:
    defs = build_tool_definitions(create_tools(_sandbox(tmp_path), ["shell"]))
    assert defs == [ToolSpec(name="shell", description="Execute a shell command", parameters=tool_parameters("shell"))]

    wire = tool_spec_to_openai_tool(defs[0])
    assert wire["type"] == "function"
    assert wire["function"]["name"] == "shell"
    assert wire["function"]["parameters"]["required"] == ["command"]


def test_read_write_tools_go_through_sandbox(tmp_path: Path) -> None:
    sb = _sandbox(tmp_path)
    tools = create_tools(sb, builtin_tool_names())

    out = _by_name(tools, "write").execute({"path": "notes/a.txt", "content": "hello"})
    assert out == {"path": "notes/a.txt", "bytes": 5}
    assert _by_name(tools, "read").execute({"path": "notes/a.txt"}) == "hello"

    with pytest.raises(PathEscapeError):
        _by_name(tools, "read").execute({"path": "../x"})


def test_glob_and_grep_tool_results_are_json_serializable(tmp_path: Path) -> None:
    sb = _sandbox(tmp_path)
    (sb.root / "m.py").write_text("x = 1\ny = 2\n", encoding="utf-8")
    tools = create_tools(sb, ["glob", "grep"])

    assert _by_name(tools, "glob").execute({"pattern": "*.py"}) == ["m.py"]
    hits = _by_name(tools, "grep").execute({"pattern": r"y =", "file_pattern": "*.py"})
    assert hits == [{"file": "m.py", "line": 2, "content": "y = 2"}]
    json.dumps(hits)


def test_tool_argument_validation(tmp_path: Path) -> None:
    tools = create_tools(_sandbox(tmp_path), ["read", "write"])

    with pytest.raises(ToolArgumentError) as missing:
        _by_name(tools, "read").execute({})
    assert "path" in str(missing.value)

    with pytest.raises(ToolArgumentError):
        _by_name(tools, "write").execute({"path": "a.txt"})

    with pytest.raises(ToolArgumentError):
        _by_name(tools, "read").execute({"path": "a.txt", "extra": 1})


@pytest.mark.skipif(os.name == "nt", reason="requires POSIX sh")
def test_shell_tool_returns_structured_result(tmp_path: Path) -> None:
    tools = create_tools(_sandbox(tmp_path), ["shell"])
    out = tools[0].execute({"command": "echo hi; exit 2"})

    assert out["stdout"] == "hi\n"
    assert out["exit_code"] == 2
    assert out["success"] is False
    assert out["timed_out"] is False
    json.dumps(out)
