"""配置（默认配置 + YAML/JSON overlay + pydantic 校验）。"""

from __future__ import annotations

from local_agents.config.loader import AgentConfig, LlmConfig, LocalAgentsConfig, load_config, load_config_dicts, parse_duration

__all__ = ["AgentConfig", "LlmConfig", "LocalAgentsConfig", "load_config", "load_config_dicts", "parse_duration"]
