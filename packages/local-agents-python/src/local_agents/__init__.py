"""
Local Agents（Python）：嵌入式本地 Agent 运行时 + MCP stdio 服务端。

说明：
- 本包让外部进程（例如 CLI 助手）通过换行分隔的 JSON-RPC 2.0（stdio）驱动一组
  受 workspace 沙箱约束、可调用工具的 LLM agent。
- 当前包含：
  - WorkspaceSandbox（路径收敛 + 文件/检索/shell 原语）
  - Tool Registry（read/write/glob/grep/shell）
  - EmbeddedAgent（有上限的 tool-calling 循环）
  - Runner（单个/并行/顺序/编排式调用）
  - McpServer（JSON-RPC 2.0 分发 + 有界行传输）
  - 配置加载器（YAML/JSON overlay + pydantic 校验）与 CLI
"""

from __future__ import annotations

from local_agents.core.agent import EmbeddedAgent
from local_agents.core.contracts import AgentInfo, AgentResult, AgentSpec, AgentTask, OrchestratedResult, OrchestratedTask
from local_agents.core.runner import Runner
from local_agents.mcp.server import McpServer
from local_agents.sandbox import WorkspaceSandbox

__all__ = [
    "AgentInfo",
    "AgentResult",
    "AgentSpec",
    "AgentTask",
    "EmbeddedAgent",
    "McpServer",
    "OrchestratedResult",
    "OrchestratedTask",
    "Runner",
    "WorkspaceSandbox",
    "__version__",
]

__version__ = "1.0.0"
