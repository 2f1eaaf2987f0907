"""
OpenAI-compatible `/v1/chat/completions` client（同步、非 streaming）。

说明：
- 单次请求返回完整的 `CompletionResponse`（content + tool_calls）。
- 429/5xx 与网络错误按 `max_retries` 重试：优先 `Retry-After`，否则指数退避 + 抖动。
- API key 从 `llm.api_key_env` 指定的环境变量读取（或构造时显式覆盖）。
"""

from __future__ import annotations

import json
import logging
import os
import random
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from local_agents.config.loader import LlmConfig
from local_agents.core.errors import LlmError
from local_agents.llm.protocol import ChatRequest, CompletionResponse, Message
from local_agents.tools.protocol import ToolCall, tool_spec_to_openai_tool

logger = logging.getLogger(__name__)


def _retryable_status(code: int) -> bool:
    """判断 HTTP status 是否适合重试（保守）。"""

    return code == 429 or 500 <= code <= 599


def _retry_after_ms_from_headers(headers: httpx.Headers) -> Optional[int]:
    """
    从 `Retry-After` 头解析等待毫秒数。

    约束：
    - 仅支持整数秒；无法解析则返回 None。
    """

    ra = headers.get("Retry-After")
    if not ra:
        return None
    try:
        sec = int(str(ra).strip())
    except ValueError:
        return None
    if sec <= 0:
        return None
    return sec * 1000


def _error_message_from_response(resp: httpx.Response) -> str:
    """提取 OpenAI 风格错误体 `{"error": {"message": ...}}`；失败时回退为原始文本。"""

    try:
        body = resp.json()
    except ValueError:
        return resp.text[:500]
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
    return resp.text[:500]


def _message_to_wire(msg: Message) -> Dict[str, Any]:
    """把内部 Message 转为 chat.completions 的 message 形状。"""

    if msg.role == "tool":
        return {"role": "tool", "tool_call_id": msg.tool_call_id or "", "content": msg.content}
    out: Dict[str, Any] = {"role": msg.role, "content": msg.content}
    if msg.role == "assistant" and msg.tool_calls:
        out["content"] = msg.content or None
        out["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": json.dumps(tc.arguments, ensure_ascii=False)},
            }
            for tc in msg.tool_calls
        ]
    return out


def _parse_tool_calls(raw: Any) -> List[ToolCall]:
    """解析 `message.tool_calls`；arguments 不是合法 JSON object 时按空参数处理。"""

    calls: List[ToolCall] = []
    if not isinstance(raw, list):
        return calls
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        fn = item.get("function") or {}
        name = str(fn.get("name") or "")
        raw_args = fn.get("arguments")
        args: Dict[str, Any] = {}
        if isinstance(raw_args, dict):
            args = raw_args
        elif isinstance(raw_args, str) and raw_args.strip():
            try:
                parsed = json.loads(raw_args)
            except json.JSONDecodeError:
                logger.warning("tool call %s has non-JSON arguments; treating as empty", name)
                parsed = {}
            if isinstance(parsed, dict):
                args = parsed
        calls.append(ToolCall(id=str(item.get("id") or f"call_{idx}"), name=name, arguments=args))
    return calls


class OpenAIChatClient:
    """
    OpenAI-compatible chat.completions 实现（网络层）。

    参数：
    - `cfg`：LLM 配置（base_url、model、api_key_env、timeout_sec、max_retries 等）
    - `api_key`：可选的 API key 覆盖（仅内存；优先于环境变量）
    - `transport`：可选 httpx transport（测试用 `httpx.MockTransport`）
    - `sleep`：退避等待函数（测试可替换）
    """

    def __init__(
        self,
        cfg: LlmConfig,
        *,
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """创建 client（不做网络 I/O）。"""

        self._cfg = cfg
        self._api_key_override = api_key
        self._transport = transport
        self._sleep = sleep

    def _endpoint(self) -> str:
        """返回 `/chat/completions` 的完整 URL（基于 cfg.base_url 拼接）。"""

        return f"{self._cfg.base_url.rstrip('/')}/chat/completions"

    def _auth_header(self) -> Dict[str, str]:
        """
        构造 Authorization header。

        异常：
        - LlmError：缺少 API key（override 与 env 均为空）
        """

        key = self._api_key_override or os.environ.get(self._cfg.api_key_env, "")
        if not key:
            raise LlmError(f"missing API key environment variable: {self._cfg.api_key_env}")
        return {"Authorization": f"Bearer {key}"}

    def _payload(self, request: ChatRequest) -> Dict[str, Any]:
        """组装请求体。"""

        payload: Dict[str, Any] = {
            "model": request.model or self._cfg.model,
            "messages": [_message_to_wire(m) for m in request.messages],
        }
        if request.tools:
            payload["tools"] = [tool_spec_to_openai_tool(s) for s in request.tools]
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if self._cfg.temperature is not None:
            payload["temperature"] = self._cfg.temperature
        payload.update(request.extra)
        return payload

    def _backoff(self, *, attempt: int, retry_after_ms: Optional[int]) -> None:
        """等待退避时间（attempt 从 0 开始；上限 8s + 10% 抖动）。"""

        if retry_after_ms is not None:
            delay = retry_after_ms / 1000.0
        else:
            base = min(8.0, 0.5 * (2**attempt))
            delay = base + random.uniform(0.0, base * 0.1)
        self._sleep(delay)

    def complete(self, request: ChatRequest) -> CompletionResponse:
        """
        发起一次 chat.completions 请求并解析结果。

        异常：
        - LlmError：缺少 key、不可重试的 HTTP 错误、重试耗尽、响应无法解析
        """

        payload = self._payload(request)
        headers = {"Content-Type": "application/json"}
        headers.update(self._auth_header())
        max_retries = int(self._cfg.max_retries)

        attempt = 0
        while True:
            try:
                with httpx.Client(timeout=httpx.Timeout(self._cfg.timeout_sec), transport=self._transport) as client:
                    resp = client.post(self._endpoint(), json=payload, headers=headers)
            except httpx.HTTPError as exc:
                if attempt >= max_retries:
                    raise LlmError(f"chat completion request failed: {exc}") from exc
                logger.info("chat completion network error (attempt %d): %s", attempt + 1, exc)
                self._backoff(attempt=attempt, retry_after_ms=None)
                attempt += 1
                continue

            if resp.status_code >= 400:
                if attempt < max_retries and _retryable_status(resp.status_code):
                    logger.info("chat completion HTTP %d (attempt %d); retrying", resp.status_code, attempt + 1)
                    self._backoff(attempt=attempt, retry_after_ms=_retry_after_ms_from_headers(resp.headers))
                    attempt += 1
                    continue
                raise LlmError(f"chat completion failed: HTTP {resp.status_code}: {_error_message_from_response(resp)}")

            return self._parse_response(resp)

    def _parse_response(self, resp: httpx.Response) -> CompletionResponse:
        """解析 `choices[0].message`。"""

        try:
            body = resp.json()
            message = body["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LlmError(f"malformed chat completion response: {exc}") from exc
        tool_calls = _parse_tool_calls(message.get("tool_calls"))
        return CompletionResponse(
            content=str(message.get("content") or ""),
            tool_calls=tool_calls,
            done=not tool_calls,
        )
