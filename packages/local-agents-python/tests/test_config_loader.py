from __future__ import annotations

import json
from pathlib import Path

import pytest

from local_agents.config.defaults import load_default_config_dict
from local_agents.config.loader import load_config, load_config_dicts, parse_duration
from local_agents.core.errors import ConfigError


def _write_yaml(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("5m", 300.0),
        ("2m", 120.0),
        ("30s", 30.0),
        ("10m", 600.0),
        ("1h", 3600.0),
        ("2h30m", 9000.0),
        ("1.5s", 1.5),
        ("100ms", 0.1),
        ("45", 45.0),
        (12, 12.0),
        (0.25, 0.25),
    ],
)
def test_parse_duration(raw, expected) -> None:  # type: ignore[no-untyped-def]
    assert parse_duration(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["", "abc", "5 minutes", "m5", "-1", -3, True, None, "10x"])
def test_parse_duration_rejects_invalid(raw) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_embedded_defaults() -> None:
    defaults = load_default_config_dict()
    assert defaults["mode"] == "local"
    assert defaults["mcp"]["transport"] == "stdio"
    assert defaults["run"]["max_iterations"] == 10

    cfg = load_config_dicts([])
    assert cfg.timeouts.agent_invoke == 300.0
    assert cfg.timeouts.shell_command == 120.0
    assert cfg.timeouts.file_read == 30.0
    assert cfg.timeouts.parallel_total == 600.0
    assert cfg.run.max_file_bytes == 10 * 1024 * 1024
    assert cfg.agents == []


def test_load_yaml_config_resolves_workspace_relative_to_file(tmp_path: Path) -> None:
    (tmp_path / "project" / "ws").mkdir(parents=True)
    cfg_path = _write_yaml(
        tmp_path / "project" / "local-agents.yaml",
        """
workspace: ws
agents:
  - name: coder
    description: Writes code
    instructions: You write code.
    tools: [read, write, shell]
  - name: reviewer
    instructions: prompts/reviewer.md
    tools: [read, grep]
    model: gpt-4o-mini
timeouts:
  shell_command: 10s
""",
    )

    cfg = load_config([cfg_path])

    assert cfg.workspace_path == (tmp_path / "project" / "ws").resolve()
    assert cfg.config_dir == (tmp_path / "project").resolve()
    assert cfg.list_agent_names() == ["coder", "reviewer"]
    reviewer = cfg.get_agent_config("reviewer")
    assert reviewer is not None
    assert reviewer.model == "gpt-4o-mini"
    assert reviewer.to_spec().tools == ["read", "grep"]
    assert cfg.get_agent_config("ghost") is None
    assert cfg.timeouts.shell_command == 10.0
    assert cfg.timeouts.agent_invoke == 300.0


def test_load_json_config(tmp_path: Path) -> None:
    cfg_path = tmp_path / "local-agents.json"
    cfg_path.write_text(
        json.dumps({"workspace": ".", "agents": [{"name": "a", "instructions": "x"}], "mcp": {"require_initialize": True}}),
        encoding="utf-8",
    )
    cfg = load_config([cfg_path])
    assert cfg.list_agent_names() == ["a"]
    assert cfg.mcp.require_initialize is True
    assert cfg.mcp.server_name == "local-agents"


def test_overlays_merge_in_order(tmp_path: Path) -> None:
    base = _write_yaml(tmp_path / "base.yaml", "llm:\n  model: m1\n  temperature: 0.1\nagents:\n  - name: a\n    instructions: x\n")
    overlay = _write_yaml(tmp_path / "overlay.yml", "llm:\n  model: m2\nagents:\n  - name: b\n    instructions: y\n")

    cfg = load_config([base, overlay])
    assert cfg.llm.model == "m2"
    assert cfg.llm.temperature == pytest.approx(0.1)
    assert cfg.list_agent_names() == ["b"]


def test_http_transport_defaults_port(tmp_path: Path) -> None:
    cfg = load_config_dicts([{"mcp": {"transport": "http"}}], base_dir=tmp_path)
    assert cfg.mcp.port == 8080


@pytest.mark.parametrize(
    "overlay, needle",
    [
        ({"mode": "remote"}, "mode must be 'local'"),
        ({"agents": [{"name": "a", "instructions": "x"}, {"name": "a", "instructions": "y"}]}, "duplicate agent name"),
        ({"agents": [{"name": "", "instructions": "x"}]}, "agent name is required"),
        ({"agents": [{"name": "a", "instructions": ""}]}, "instructions are required"),
        ({"agents": [{"name": "a", "instructions": "x", "tools": ["teleport"]}]}, "unknown tool"),
        ({"agents": [{"name": "a", "instructions": "x", "color": "red"}]}, "color"),
        ({"mcp": {"transport": "websocket"}}, "mcp.transport"),
        ({"timeouts": {"shell_command": "soon"}}, "invalid duration"),
    ],
)
def test_validation_errors_are_config_errors(tmp_path: Path, overlay, needle) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ConfigError) as ei:
        load_config_dicts([overlay], base_dir=tmp_path)
    assert needle in str(ei.value)
    assert ei.value.code == "CONFIG_INVALID"


def test_missing_workspace_is_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as ei:
        load_config_dicts([{"workspace": "nope"}], base_dir=tmp_path)
    assert "workspace does not exist" in str(ei.value)


def test_file_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config([tmp_path / "missing.yaml"])

    toml = tmp_path / "cfg.toml"
    toml.write_text("x = 1\n", encoding="utf-8")
    with pytest.raises(ConfigError) as ei:
        load_config([toml])
    assert "unsupported config format" in str(ei.value)

    broken = _write_yaml(tmp_path / "broken.yaml", "agents: [\n")
    with pytest.raises(ConfigError):
        load_config([broken])

    scalar = _write_yaml(tmp_path / "scalar.yaml", "just a string\n")
    with pytest.raises(ConfigError) as ei2:
        load_config([scalar])
    assert "mapping" in str(ei2.value)
