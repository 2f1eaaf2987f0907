"""
Fake LLM client（离线回归夹具）。

用途：
- 在不依赖真实模型/外网的情况下，回归 Agent Loop 与编排逻辑（tool_calls → 执行 → 回注 → 继续）。
- `llm.provider: fake` 时作为 CLI 的默认 client：按脚本回放，脚本为空时回显最后一条 user 消息。
"""

from __future__ import annotations

import threading
from typing import Callable, List, Optional, Sequence, Union

from local_agents.llm.protocol import ChatRequest, CompletionResponse

Responder = Callable[[ChatRequest], CompletionResponse]


class FakeLLMClient:
    """
    用脚本化响应模拟 LLM。

    说明：
    - `script` 为序列时：每次 `complete(...)` 按顺序消费一个条目；耗尽后抛 `ValueError`。
    - `script` 为可调用对象时：每次调用它生成响应（可按 `request.agent` 路由）。
    - `script` 为 None 时：回显最后一条 user 消息并结束。
    - 可被多个 agent loop 并发调用（脚本游标由锁保护）。
    """

    def __init__(self, script: Union[Sequence[CompletionResponse], Responder, None] = None) -> None:
        """创建 fake client；`script` 语义见类说明。"""

        self._lock = threading.Lock()
        self._responder: Optional[Responder] = script if callable(script) else None
        self._responses: List[CompletionResponse] = [] if script is None or callable(script) else list(script)
        self._echo = script is None
        self._idx = 0
        self.requests: List[ChatRequest] = []

    def complete(self, request: ChatRequest) -> CompletionResponse:
        """返回下一条脚本响应（并记录请求，便于断言）。"""

        with self._lock:
            self.requests.append(request)
            if self._responder is not None:
                responder = self._responder
            elif self._echo:
                return _echo_response(request)
            else:
                if self._idx >= len(self._responses):
                    raise ValueError("FakeLLMClient script 已耗尽")
                resp = self._responses[self._idx]
                self._idx += 1
                return resp
        return responder(request)


def _echo_response(request: ChatRequest) -> CompletionResponse:
    """回显最后一条 user 消息。"""

    for msg in reversed(request.messages):
        if msg.role == "user":
            return CompletionResponse(content=msg.content, done=True)
    return CompletionResponse(content="", done=True)
