"""
LLM 协议：Message / ChatRequest / CompletionResponse / LLMClient。

设计目标：
- 用单一参数对象（ChatRequest）承载一次补全请求，协议签名保持稳定；
- Agent Loop 只依赖 `LLMClient.complete(...)`，具体 provider 可替换（fake / OpenAI-compatible）。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from local_agents.tools.protocol import ToolCall, ToolSpec

Role = Literal["system", "user", "assistant", "tool"]


class Message(BaseModel):
    """
    对话消息。

    字段：
    - role：system/user/assistant/tool
    - content：文本内容
    - name：tool 消息对应的工具名
    - tool_call_id：tool 消息关联的调用 id
    - tool_calls：assistant 消息发起的工具调用（用于 provider 关联后续 tool 消息）
    """

    model_config = ConfigDict(extra="forbid")

    role: Role
    content: str = ""
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)


class CompletionResponse(BaseModel):
    """
    一次补全的结果。

    字段：
    - content：文本输出
    - tool_calls：请求执行的工具调用（为空表示本轮结束）
    - done：provider 显式声明结束（即使带 tool_calls 也终止循环）
    """

    model_config = ConfigDict(extra="forbid")

    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    done: bool = False


@dataclass(frozen=True)
class ChatRequest:
    """
    ChatRequest：LLM 请求参数包。

    字段：
    - messages：完整对话历史（按顺序）
    - tools：可用工具定义
    - model：可选模型覆盖（None 表示使用 client 默认模型）
    - max_tokens：单次补全的 token 上限
    - agent：发起请求的 agent 名（用于日志/脚本化 fake client 路由）
    - extra：provider 特有扩展字段
    """

    messages: List[Message]
    tools: List[ToolSpec] = field(default_factory=list)
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    agent: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class LLMClient(Protocol):
    """补全接口：失败时抛异常（由 Agent Loop 转为失败的 AgentResult）。"""

    def complete(self, request: ChatRequest) -> CompletionResponse:
        """执行一次补全。"""
