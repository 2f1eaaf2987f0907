"""
配置加载器（YAML / JSON）。

设计目标：
- 支持加载多个配置文件，并按顺序做深度合并（后者覆盖前者）；内置默认配置作为第一层。
- 使用 pydantic 做 schema 校验；段落级未知字段允许保留，agent 条目严格校验。
- 时长字段接受带单位的时长字符串（`100ms`、`30s`、`5m`、`2h30m`）或数字（秒）。

校验规则：
- `mode` 必须为 `local`
- `workspace` 必须存在且为目录（相对路径相对第一个配置文件所在目录）
- agent 名非空且唯一；instructions 非空；tools 只能是内置工具名
- `mcp.transport` 只能是 `stdio` / `http`（http 未配置端口时默认 8080）
"""

from __future__ import annotations

import json
import re
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator, model_validator

from local_agents.core.contracts import AgentSpec
from local_agents.core.errors import ConfigError
from local_agents.tools.registry import builtin_tool_names, is_known_tool

DEFAULT_HTTP_PORT = 8080

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> float:
    """
    解析时长为秒（float）。

    支持：
    - 数字：直接视为秒
    - 字符串：单位后缀形式，如 `1h`、`2h30m`、`1.5s`、`100ms`；纯数字字符串视为秒

    异常：
    - ValueError：格式非法或为负数
    """

    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"duration must be >= 0: {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")
    text = value.strip()
    if not text:
        raise ValueError("duration must not be empty")
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"duration must be >= 0: {value!r}")
        return seconds

    pos = 0
    total = 0.0
    for m in _DURATION_PART.finditer(text):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return total


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class AgentConfig(BaseModel):
    """单个 agent 的配置条目（严格校验）。"""

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""
    instructions: str = ""
    tools: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    max_tokens: int = Field(default=4096, ge=1)

    def to_spec(self) -> AgentSpec:
        """转换为运行时 AgentSpec。"""

        return AgentSpec(
            name=self.name,
            description=self.description,
            instructions=self.instructions,
            tools=list(self.tools),
            model=self.model,
            max_tokens=self.max_tokens,
        )


class McpConfig(BaseModel):
    """MCP 服务端配置。"""

    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    transport: str = "stdio"  # stdio|http
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    server_name: str = "local-agents"
    server_version: str = "1.0.0"
    max_message_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    require_initialize: bool = False


class LlmConfig(BaseModel):
    """LLM 连接配置。"""

    model_config = ConfigDict(extra="allow")

    provider: str = "openai"  # openai|fake
    model: str = "gpt-4o"
    base_url: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    temperature: Optional[float] = Field(default=0.7, ge=0.0, le=2.0)
    timeout_sec: float = Field(default=60, gt=0)
    max_retries: int = Field(default=2, ge=0)


class RunConfig(BaseModel):
    """运行参数。"""

    model_config = ConfigDict(extra="allow")

    max_iterations: int = Field(default=10, ge=1)
    max_file_bytes: int = Field(default=10 * 1024 * 1024, ge=1)


class TimeoutsConfig(BaseModel):
    """
    超时配置（单位：秒；配置文件中可写带单位的时长）。

    字段：
    - agent_invoke：单次 agent 调用的 wall time 预算
    - shell_command：shell / run_command 的超时
    - file_read：读取文件的超时（本地读取受 `run.max_file_bytes` 约束，当前仅做校验）
    - parallel_total：invoke_parallel 的总超时
    """

    model_config = ConfigDict(extra="allow")

    agent_invoke: float = 300.0
    shell_command: float = 120.0
    file_read: float = 30.0
    parallel_total: float = 600.0

    @field_validator("agent_invoke", "shell_command", "file_read", "parallel_total", mode="before")
    @classmethod
    def _parse(cls, v: Any) -> float:
        """把带单位的时长转换为秒。"""

        return parse_duration(v)


class LocalAgentsConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="allow")

    mode: str = "local"
    workspace: str = "."
    log_level: str = "INFO"
    agents: List[AgentConfig] = Field(default_factory=list)
    mcp: McpConfig = Field(default_factory=McpConfig)
    llm: LlmConfig = Field(default_factory=LlmConfig)
    run: RunConfig = Field(default_factory=RunConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)

    _config_dir: Optional[Path] = PrivateAttr(default=None)

    @model_validator(mode="after")
    def _validate(self) -> "LocalAgentsConfig":
        """跨字段校验（mode / agents / transport）。"""

        if self.mode != "local":
            raise ValueError(f"mode must be 'local', got {self.mode!r}")
        seen: set[str] = set()
        for agent in self.agents:
            if not agent.name.strip():
                raise ValueError("agent name is required")
            if agent.name in seen:
                raise ValueError(f"duplicate agent name: {agent.name}")
            seen.add(agent.name)
            if not agent.instructions.strip():
                raise ValueError(f"agent {agent.name}: instructions are required")
            for tool in agent.tools:
                if not is_known_tool(tool):
                    raise ValueError(
                        f"agent {agent.name}: unknown tool {tool!r} (valid: {', '.join(builtin_tool_names())})"
                    )
        if self.mcp.transport not in ("stdio", "http"):
            raise ValueError(f"mcp.transport must be 'stdio' or 'http', got {self.mcp.transport!r}")
        if self.mcp.transport == "http" and self.mcp.port is None:
            self.mcp.port = DEFAULT_HTTP_PORT
        return self

    @property
    def config_dir(self) -> Optional[Path]:
        """第一个配置文件所在目录（用于解析相对路径；纯 dict 加载时为 None）。"""

        return self._config_dir

    @property
    def workspace_path(self) -> Path:
        """workspace 的绝对路径。"""

        return Path(self.workspace)

    def get_agent_config(self, name: str) -> Optional[AgentConfig]:
        """按名字查找 agent 配置。"""

        for agent in self.agents:
            if agent.name == name:
                return agent
        return None

    def list_agent_names(self) -> List[str]:
        """返回全部 agent 名（配置顺序）。"""

        return [a.name for a in self.agents]


def _load_file(path: Path) -> Dict[str, Any]:
    """
    按扩展名读取配置文件为 dict；空文件返回空 dict。

    异常：
    - ConfigError：文件不存在、扩展名不支持、解析失败、根节点不是 mapping
    """

    if not path.exists():
        raise ConfigError(f"config file not found: {path}", details={"path": str(path)})
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    try:
        if suffix == ".json":
            data = json.loads(text) if text.strip() else None
        elif suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            raise ConfigError(
                f"unsupported config format: {path.suffix or '(none)'} (use .json, .yaml or .yml)",
                details={"path": str(path)},
            )
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to parse config {path}: {e}", details={"path": str(path)}) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}", details={"path": str(path)})
    return data


def load_config_dicts(
    config_dicts: Iterable[Mapping[str, Any]],
    *,
    base_dir: Optional[Path] = None,
    include_defaults: bool = True,
) -> LocalAgentsConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `LocalAgentsConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    - base_dir：解析相对 workspace 的目录（默认当前工作目录）
    - include_defaults：是否以内置默认配置作为第一层

    异常：
    - ConfigError：校验失败或 workspace 不存在
    """

    from local_agents.config.defaults import load_default_config_dict

    merged: Dict[str, Any] = load_default_config_dict() if include_defaults else {}
    for overlay in config_dicts:
        if overlay:
            _deep_merge(merged, overlay)
    try:
        cfg = LocalAgentsConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"invalid config: {e}", details={"errors": e.errors(include_url=False)}) from e

    root = Path(base_dir) if base_dir is not None else Path.cwd()
    workspace = Path(cfg.workspace).expanduser()
    if not workspace.is_absolute():
        workspace = root / workspace
    workspace = workspace.resolve()
    if not workspace.is_dir():
        raise ConfigError(f"workspace does not exist or is not a directory: {workspace}", details={"workspace": str(workspace)})

    out = cfg.model_copy(update={"workspace": str(workspace)})
    out._config_dir = Path(base_dir).resolve() if base_dir is not None else None
    return out


def load_config(config_paths: Iterable[Path], *, include_defaults: bool = True) -> LocalAgentsConfig:
    """
    加载并合并多个配置文件，返回校验后的 `LocalAgentsConfig`。

    参数：
    - config_paths：`.yaml/.yml/.json` 路径列表；按顺序合并（后者覆盖前者）
    - include_defaults：是否以内置默认配置作为第一层

    说明：
    - 相对 `workspace` 以第一个配置文件所在目录为基准。
    """

    paths = [Path(p).expanduser() for p in config_paths]
    overlays = [_load_file(p) for p in paths]
    base_dir = paths[0].resolve().parent if paths else None
    return load_config_dicts(overlays, base_dir=base_dir, include_defaults=include_defaults)
