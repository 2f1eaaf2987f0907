"""
LLM 边界（协议 + fake client + OpenAI-compatible client）。

说明：
- Agent Loop 只依赖 `LLMClient.complete(ChatRequest) -> CompletionResponse`。
- `OpenAIChatClient` 依赖配置模块，按需从 `local_agents.llm.openai_chat` 导入。
"""

from __future__ import annotations

from local_agents.llm.fake import FakeLLMClient
from local_agents.llm.protocol import ChatRequest, CompletionResponse, LLMClient, Message

__all__ = ["ChatRequest", "CompletionResponse", "FakeLLMClient", "LLMClient", "Message"]
