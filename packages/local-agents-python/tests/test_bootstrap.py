from __future__ import annotations

import os
from pathlib import Path

import pytest

from local_agents.bootstrap import (
    build_llm_client,
    build_runner,
    build_sandbox,
    build_server,
    discover_config_paths,
    load_dotenv,
    load_dotenv_if_present,
)
from local_agents.config.loader import load_config_dicts
from local_agents.core.errors import ConfigError
from local_agents.llm.fake import FakeLLMClient
from local_agents.llm.openai_chat import OpenAIChatClient


def test_load_dotenv_parses_minimal_syntax(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    env = tmp_path / ".env"
    env.write_text(
        "# comment\n\nexport LA_A=1\nLA_B='quoted value'\nLA_C=\"dq\"\nnot-a-pair\n=novalue\n",
        encoding="utf-8",
    )
    for key in ("LA_A", "LA_B", "LA_C"):
        monkeypatch.delenv(key, raising=False)

    assert load_dotenv(env) == 3
    assert os.environ["LA_A"] == "1"
    assert os.environ["LA_B"] == "quoted value"
    assert os.environ["LA_C"] == "dq"


def test_load_dotenv_respects_existing_unless_override(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    env = tmp_path / ".env"
    env.write_text("LA_KEEP=from_file\n", encoding="utf-8")
    monkeypatch.setenv("LA_KEEP", "from_process")

    assert load_dotenv(env) == 0
    assert os.environ["LA_KEEP"] == "from_process"
    assert load_dotenv(env, override=True) == 1
    assert os.environ["LA_KEEP"] == "from_file"


def test_load_dotenv_if_present_workspace_default(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.delenv("LOCAL_AGENTS_ENV_FILE", raising=False)
    monkeypatch.delenv("LA_BOOT", raising=False)

    assert load_dotenv_if_present(tmp_path) is None

    (tmp_path / ".env").write_text("LA_BOOT=1\n", encoding="utf-8")
    assert load_dotenv_if_present(tmp_path) == tmp_path / ".env"
    assert os.environ["LA_BOOT"] == "1"


def test_load_dotenv_if_present_explicit_file(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "dev.env").write_text("LA_EXPLICIT=yes\n", encoding="utf-8")
    monkeypatch.delenv("LA_EXPLICIT", raising=False)
    monkeypatch.setenv("LOCAL_AGENTS_ENV_FILE", "config/dev.env")

    assert load_dotenv_if_present(tmp_path) == tmp_path / "config" / "dev.env"
    assert os.environ["LA_EXPLICIT"] == "yes"

    monkeypatch.setenv("LOCAL_AGENTS_ENV_FILE", "config/missing.env")
    with pytest.raises(ConfigError):
        load_dotenv_if_present(tmp_path)


def test_discover_config_paths(tmp_path: Path, monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.delenv("LOCAL_AGENTS_CONFIG_PATHS", raising=False)
    assert discover_config_paths(tmp_path) == []

    (tmp_path / "local-agents.yml").write_text("{}\n", encoding="utf-8")
    assert discover_config_paths(tmp_path) == [tmp_path / "local-agents.yml"]

    (tmp_path / "local-agents.yaml").write_text("{}\n", encoding="utf-8")
    assert discover_config_paths(tmp_path) == [tmp_path / "local-agents.yaml"]

    monkeypatch.setenv("LOCAL_AGENTS_CONFIG_PATHS", "a.yaml; /abs/b.json ,")
    assert discover_config_paths(tmp_path) == [tmp_path / "a.yaml", Path("/abs/b.json")]


def test_build_llm_client_by_provider(tmp_path: Path) -> None:
    fake = load_config_dicts([{"llm": {"provider": "fake"}}], base_dir=tmp_path)
    assert isinstance(build_llm_client(fake), FakeLLMClient)

    openai = load_config_dicts([{"llm": {"provider": "OpenAI"}}], base_dir=tmp_path)
    assert isinstance(build_llm_client(openai), OpenAIChatClient)

    other = load_config_dicts([{"llm": {"provider": "carrier-pigeon"}}], base_dir=tmp_path)
    with pytest.raises(ConfigError):
        build_llm_client(other)


def test_build_runner_and_server_from_config(tmp_path: Path) -> None:
    (tmp_path / "prompts").mkdir()
    (tmp_path / "prompts" / "rev.md").write_text("Review things.", encoding="utf-8")
    cfg = load_config_dicts(
        [
            {
                "llm": {"provider": "fake"},
                "agents": [
                    {"name": "coder", "description": "c", "instructions": "Code.", "tools": ["read", "write"]},
                    {"name": "reviewer", "instructions": "prompts/rev.md", "tools": ["grep"]},
                ],
                "timeouts": {"shell_command": "3s"},
                "mcp": {"server_name": "custom", "require_initialize": True},
            }
        ],
        base_dir=tmp_path,
    )

    sandbox = build_sandbox(cfg)
    assert sandbox.root == tmp_path.resolve()

    runner = build_runner(cfg, sandbox=sandbox)
    assert runner.list_agents() == ["coder", "reviewer"]
    reviewer = runner.get_agent("reviewer")
    assert reviewer is not None
    assert reviewer.instructions == "Review things."
    assert runner.invoke("coder", "echo me").output == "echo me"

    server = build_server(cfg, runner)
    resp = server.handle_message({"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
    assert resp is not None
    assert resp["error"]["code"] == -32002
    init = server.handle_message({"jsonrpc": "2.0", "id": 2, "method": "initialize", "params": {}})
    assert init is not None
    assert init["result"]["serverInfo"]["name"] == "custom"
