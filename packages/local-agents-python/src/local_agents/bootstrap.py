"""
Bootstrap Layer（应用层启动：配置发现 / `.env` / 组件装配）。

设计目标：
- 保持核心无隐式 I/O：Runner / EmbeddedAgent / McpServer 不会自动读 `.env` 或发现配置；
- 提供可选 bootstrap 入口给 CLI 复用：发现配置、加载 `.env`、构造 LLM client、装配 Runner 与 McpServer。

环境变量：
- `LOCAL_AGENTS_CONFIG_PATHS`：配置文件列表（逗号/分号分隔），未显式传入 `--config` 时使用
- `LOCAL_AGENTS_ENV_FILE`：`.env` 文件路径（相对路径相对 workspace）
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from local_agents.config.loader import LocalAgentsConfig
from local_agents.core.agent import EmbeddedAgent
from local_agents.core.errors import ConfigError
from local_agents.core.executor import Executor
from local_agents.core.runner import Runner
from local_agents.llm.fake import FakeLLMClient
from local_agents.llm.protocol import LLMClient
from local_agents.mcp.server import McpServer
from local_agents.sandbox import WorkspaceSandbox

ENV_CONFIG_PATHS = "LOCAL_AGENTS_CONFIG_PATHS"
ENV_ENV_FILE = "LOCAL_AGENTS_ENV_FILE"
DEFAULT_CONFIG_NAMES = ("local-agents.yaml", "local-agents.yml", "local-agents.json")

logger = logging.getLogger(__name__)


def _split_paths(raw: str) -> List[str]:
    """将逗号/分号分隔的路径串切分为片段列表（去空白与空项，保序）。"""

    return [s.strip() for s in raw.replace(";", ",").split(",") if s.strip()]


def _parse_env_text(text: str) -> Dict[str, str]:
    """解析 `.env` 风格文本为键值字典（best-effort）。

    支持的最小语法：
    - 忽略空行与 `#` 注释行
    - 可选前缀 `export `
    - `KEY=VALUE`，并去掉 VALUE 两侧成对的单/双引号
    """

    out: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        out[key] = value
    return out


def load_dotenv(path: Path, *, override: bool = False) -> int:
    """将 `.env` 文件内容写入 `os.environ`。

    参数：
    - path：`.env` 文件路径（不存在时不做任何事）
    - override：是否覆盖已存在的环境变量

    返回：
    - 实际写入的键数量
    """

    if not path.is_file():
        return 0
    wrote = 0
    for key, value in _parse_env_text(path.read_text(encoding="utf-8")).items():
        if not override and key in os.environ:
            continue
        os.environ[key] = value
        wrote += 1
    return wrote


def load_dotenv_if_present(workspace: Path, *, override: bool = False) -> Optional[Path]:
    """
    约定加载：
    1) 若设置 `LOCAL_AGENTS_ENV_FILE`，加载其指向的文件（相对路径相对 workspace；不存在则报错）
    2) 否则若 `<workspace>/.env` 存在，加载之

    返回：
    - 实际加载的文件路径；未加载返回 None
    """

    raw = (os.environ.get(ENV_ENV_FILE) or "").strip()
    if raw:
        env_path = Path(raw).expanduser()
        if not env_path.is_absolute():
            env_path = Path(workspace) / env_path
        if not env_path.is_file():
            raise ConfigError(f"env file not found: {env_path}", details={"path": str(env_path)})
        n = load_dotenv(env_path, override=override)
        logger.debug("loaded %d variable(s) from %s", n, env_path)
        return env_path

    default_env = Path(workspace) / ".env"
    if default_env.is_file():
        n = load_dotenv(default_env, override=override)
        logger.debug("loaded %d variable(s) from %s", n, default_env)
        return default_env
    return None


def discover_config_paths(cwd: Optional[Path] = None) -> List[Path]:
    """
    配置发现规则（未显式传入 `--config` 时）：
    1) `LOCAL_AGENTS_CONFIG_PATHS`（逗号/分号分隔；相对路径相对 cwd）
    2) cwd 下第一个存在的 `local-agents.yaml|yml|json`
    """

    base = Path(cwd) if cwd is not None else Path.cwd()
    raw = os.environ.get(ENV_CONFIG_PATHS) or ""
    paths = [Path(p).expanduser() for p in _split_paths(raw)]
    if paths:
        return [p if p.is_absolute() else base / p for p in paths]
    for name in DEFAULT_CONFIG_NAMES:
        candidate = base / name
        if candidate.is_file():
            return [candidate]
    return []


def build_llm_client(cfg: LocalAgentsConfig) -> LLMClient:
    """
    按 `llm.provider` 构造 LLM client。

    异常：
    - ConfigError：未知 provider
    """

    provider = cfg.llm.provider.strip().lower()
    if provider == "fake":
        return FakeLLMClient()
    if provider == "openai":
        from local_agents.llm.openai_chat import OpenAIChatClient

        api_key = getattr(cfg.llm, "api_key", None)
        return OpenAIChatClient(cfg.llm, api_key=str(api_key) if api_key else None)
    raise ConfigError(f"unknown llm provider: {cfg.llm.provider}", details={"provider": cfg.llm.provider})


def build_sandbox(cfg: LocalAgentsConfig) -> WorkspaceSandbox:
    """按配置构造 WorkspaceSandbox（shell 超时来自 `timeouts.shell_command`）。"""

    shell_timeout_ms = int(cfg.timeouts.shell_command * 1000) or None
    return WorkspaceSandbox(
        cfg.workspace_path,
        max_file_bytes=cfg.run.max_file_bytes,
        executor=Executor(),
        shell_timeout_ms=shell_timeout_ms,
    )


def build_runner(
    cfg: LocalAgentsConfig,
    *,
    llm: Optional[LLMClient] = None,
    sandbox: Optional[WorkspaceSandbox] = None,
    logger: Optional[logging.Logger] = None,
) -> Runner:
    """
    装配 Runner 并注册全部配置的 agent。

    参数：
    - cfg：已校验配置
    - llm：可选 LLM client（默认按 `llm.provider` 构造）
    - sandbox：可选沙箱（默认按配置构造）
    - logger：可选 logger（传给 Runner 与每个 EmbeddedAgent）

    异常：
    - ConfigError：instructions 无法加载 / provider 未知
    - UnknownToolError：工具名未知
    """

    client = llm if llm is not None else build_llm_client(cfg)
    box = sandbox if sandbox is not None else build_sandbox(cfg)
    runner = Runner(box, parallel_timeout_sec=cfg.timeouts.parallel_total or None, logger=logger)
    for agent_cfg in cfg.agents:
        agent = EmbeddedAgent(
            agent_cfg.to_spec(),
            box,
            client,
            max_iterations=cfg.run.max_iterations,
            max_wall_time_sec=cfg.timeouts.agent_invoke or None,
            base_dir=cfg.config_dir,
            logger=logger,
        )
        runner.register(agent)
    return runner


def build_server(cfg: LocalAgentsConfig, runner: Runner, *, logger: Optional[logging.Logger] = None) -> McpServer:
    """按 `mcp` 段构造 McpServer。"""

    return McpServer(
        runner,
        name=cfg.mcp.server_name,
        version=cfg.mcp.server_version,
        require_initialize=cfg.mcp.require_initialize,
        logger=logger,
    )
