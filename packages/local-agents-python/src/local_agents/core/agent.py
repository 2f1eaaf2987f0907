"""
EmbeddedAgent：进程内、有上限的 tool-calling 循环。

状态机：
- Thinking：带完整历史与工具定义调用 `LLMClient.complete(...)`
- 无 tool_calls 或 `done=True` → Done（成功，输出为本轮 content）
- 否则 → Executing：按顺序执行每个 tool call，把结果（JSON）或错误（`Error: ...`）
  作为 tool 消息回注，然后回到 Thinking
- 达到迭代上限 → 失败结果（`Max iterations reached`）

约束：
- 每次 `invoke` 拥有独立的消息历史；同一 agent 可被并发调用。
- agent 级错误（LLM 失败、迭代上限、取消、超时）写入 `AgentResult`，不向上抛异常。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

from local_agents.core.contracts import AgentInfo, AgentResult, AgentSpec
from local_agents.core.errors import ConfigError
from local_agents.core.loop_controller import LoopController
from local_agents.llm.protocol import ChatRequest, LLMClient, Message
from local_agents.sandbox import WorkspaceSandbox
from local_agents.tools.protocol import Tool, ToolCall, ToolSpec
from local_agents.tools.registry import build_tool_definitions, create_tools

DEFAULT_MAX_ITERATIONS = 10

MAX_ITERATIONS_OUTPUT = "Max iterations reached"
MAX_ITERATIONS_ERROR = "agent loop exceeded maximum iterations"
CANCELLED_ERROR = "agent invocation cancelled"
TIMED_OUT_ERROR = "agent invocation timed out"

_module_logger = logging.getLogger(__name__)


def load_instructions(instructions: str, *, search_dirs: List[Path]) -> str:
    """
    解析 instructions：以 `.md` 结尾时视为文件路径并读取，否则原样返回。

    查找顺序：
    - 绝对路径：直接读取
    - 相对路径：依次尝试 `search_dirs` 中的目录（例如配置文件目录、workspace）

    异常：
    - ConfigError：`.md` 文件在所有候选位置都不存在或不可读
    """

    if not instructions.endswith(".md"):
        return instructions
    raw = Path(instructions).expanduser()
    candidates = [raw] if raw.is_absolute() else [d / raw for d in search_dirs]
    for candidate in candidates:
        if candidate.is_file():
            try:
                return candidate.read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigError(
                    f"failed to load instructions: {e}",
                    details={"path": str(candidate)},
                ) from e
    raise ConfigError(
        f"failed to load instructions: {instructions} not found",
        details={"path": instructions, "searched": [str(c) for c in candidates]},
    )


class EmbeddedAgent:
    """
    单个 agent 的运行体。

    参数：
    - spec：AgentSpec（instructions 可为 `.md` 路径）
    - sandbox：工具共享的 WorkspaceSandbox
    - llm：LLMClient
    - max_iterations：Thinking 次数上限（默认 10）
    - max_wall_time_sec：单次调用的 wall time 预算（None 表示不限制）
    - base_dir：解析相对 `.md` instructions 的首选目录（通常为配置文件所在目录），其后是 workspace
    - logger：可注入的 logger（默认模块 logger）

    异常：
    - UnknownToolError：spec.tools 含未知工具名
    - ConfigError：instructions 文件无法加载
    """

    def __init__(
        self,
        spec: AgentSpec,
        sandbox: WorkspaceSandbox,
        llm: LLMClient,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_wall_time_sec: Optional[float] = None,
        base_dir: Optional[Path] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """创建 agent：加载 instructions 并构造工具列表。"""

        if max_iterations < 1:
            raise ValueError("max_iterations 必须 >= 1")
        search_dirs: List[Path] = []
        if base_dir is not None:
            search_dirs.append(Path(base_dir))
        search_dirs.append(sandbox.root)
        self._spec = spec
        self._instructions = load_instructions(spec.instructions, search_dirs=search_dirs)
        self._tools: List[Tool] = create_tools(sandbox, spec.tools)
        self._tool_defs: List[ToolSpec] = build_tool_definitions(self._tools)
        self._llm = llm
        self._max_iterations = int(max_iterations)
        self._max_wall_time_sec = max_wall_time_sec
        self._logger = logger or _module_logger

    @property
    def name(self) -> str:
        """agent 名称。"""

        return self._spec.name

    @property
    def description(self) -> str:
        """agent 描述。"""

        return self._spec.description

    @property
    def spec(self) -> AgentSpec:
        """原始 AgentSpec。"""

        return self._spec

    @property
    def instructions(self) -> str:
        """已解析的 system prompt 文本。"""

        return self._instructions

    @property
    def tool_definitions(self) -> List[ToolSpec]:
        """LLM 可见的工具定义。"""

        return list(self._tool_defs)

    def info(self) -> AgentInfo:
        """返回对外可见信息。"""

        return AgentInfo(name=self.name, description=self.description)

    def invoke(self, input: str, *, cancel_checker: Optional[Callable[[], bool]] = None) -> AgentResult:
        """
        运行一次 agent 循环。

        参数：
        - input：用户输入
        - cancel_checker：协作式取消回调；在每次 Thinking 之前检查

        返回：
        - AgentResult（永不因 agent 级错误抛异常）
        """

        messages: List[Message] = [
            Message(role="system", content=self._instructions),
            Message(role="user", content=input),
        ]
        loop = LoopController(
            max_iterations=self._max_iterations,
            max_wall_time_sec=self._max_wall_time_sec,
            cancel_checker=cancel_checker,
        )

        while loop.try_begin_iteration():
            if loop.is_cancelled():
                self._logger.info("agent %s cancelled before iteration %d", self.name, loop.iterations)
                return AgentResult.failed(self.name, input, CANCELLED_ERROR)
            if loop.wall_time_exceeded():
                self._logger.warning("agent %s exceeded wall time budget", self.name)
                return AgentResult.failed(self.name, input, TIMED_OUT_ERROR)

            request = ChatRequest(
                messages=list(messages),
                tools=list(self._tool_defs),
                model=self._spec.model,
                max_tokens=self._spec.max_tokens,
                agent=self.name,
            )
            try:
                resp = self._llm.complete(request)
            except Exception as e:
                self._logger.warning("agent %s: LLM completion failed: %s", self.name, e)
                return AgentResult.failed(self.name, input, f"LLM completion failed: {e}")

            if not resp.tool_calls or resp.done:
                return AgentResult(agent=self.name, input=input, output=resp.content, success=True)

            messages.append(Message(role="assistant", content=resp.content, tool_calls=list(resp.tool_calls)))
            for call in resp.tool_calls:
                messages.append(
                    Message(
                        role="tool",
                        content=self._run_tool(call),
                        name=call.name,
                        tool_call_id=call.id,
                    )
                )

        self._logger.warning("agent %s hit the iteration ceiling (%d)", self.name, self._max_iterations)
        return AgentResult.failed(self.name, input, MAX_ITERATIONS_ERROR, output=MAX_ITERATIONS_OUTPUT)

    def _run_tool(self, call: ToolCall) -> str:
        """执行单个 tool call 并返回回注文本（JSON 结果或 `Error: ...`）。"""

        tool = self._find_tool(call.name)
        if tool is None:
            return f"Error: unknown tool: {call.name}"
        try:
            result: Any = tool.execute(call.arguments)
        except Exception as e:
            self._logger.debug("agent %s: tool %s failed: %s", self.name, call.name, e)
            return f"Error: {e}"
        return json.dumps(result, ensure_ascii=False, default=str)

    def _find_tool(self, name: str) -> Optional[Tool]:
        """按名字查找本 agent 可用的工具。"""

        for tool in self._tools:
            if tool.name == name:
                return tool
        return None
