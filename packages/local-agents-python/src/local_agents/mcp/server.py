"""
MCP Server：换行分隔 JSON-RPC 2.0（stdio）→ Runner / WorkspaceSandbox。

生命周期：
- `Uninitialized → Initialized`（由 `initialize` 设置）。
- 默认宽松：未初始化也接受其它方法；`require_initialize=True` 时，除 `initialize/ping`
  外的方法在初始化前返回 `-32002 Server not initialized`。

错误口径：
- 协议级（JSON 解析失败、非法请求、未知方法、非法参数）→ JSON-RPC error，会话继续。
- 沙箱级（路径越界、文件过大、非法正则、进程无法启动）→ `isError=true` 的 text 块。
- handler 内未预期异常 → `-32603 Internal error`，会话继续。
- 只有 stdout 写失败会终止 `serve`（异常向上抛出）。

说明：
- 请求顺序处理（单线程）；并行只发生在 `invoke_parallel` 内部。
- 没有 `id` 的消息是 notification：不产生任何响应。
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from local_agents.core.contracts import AgentResult, AgentTask
from local_agents.core.errors import LocalAgentsError
from local_agents.core.runner import Runner
from local_agents.mcp.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    PROTOCOL_VERSION,
    SERVER_NOT_INITIALIZED,
    CallToolResult,
    InputSchema,
    JsonRpcError,
    Property,
    ToolInfo,
    error_response,
    success_response,
)
from local_agents.mcp.transport import OVERSIZED, LineTransport

DEFAULT_SERVER_NAME = "local-agents"
DEFAULT_SERVER_VERSION = "1.0.0"

_LIFECYCLE_NOTIFICATIONS = ("initialized", "notifications/initialized")
_ALWAYS_ALLOWED = ("initialize", "ping")

_module_logger = logging.getLogger(__name__)


class _MissingArgument(Exception):
    """工具参数缺失（转换为 `Error: ...` 内容块）。"""


def _require_str(args: Dict[str, Any], *names: str) -> List[str]:
    """读取必填字符串参数；任一缺失或为空时抛 `_MissingArgument`。"""

    values = [args.get(n) for n in names]
    if any(not isinstance(v, str) or not v for v in values):
        raise _MissingArgument(f"{' and '.join(names)} {'is' if len(names) == 1 else 'are'} required")
    return [str(v) for v in values]


def _result_text(result: AgentResult) -> str:
    """AgentResult 的展示文本：输出；失败时追加 `Error: ...`。"""

    if result.success or not result.error:
        return result.output
    if result.output:
        return f"{result.output}\n\nError: {result.error}"
    return f"Error: {result.error}"


class McpServer:
    """
    MCP 协议服务端。

    参数：
    - runner：agent 编排器（其 sandbox 用于直连文件/shell 工具）
    - name/version：`serverInfo`
    - require_initialize：是否强制 `initialize` 先行
    - logger：可注入的 logger（默认模块 logger；注意 stdout 属于协议，日志只应写 stderr）
    """

    def __init__(
        self,
        runner: Runner,
        *,
        name: str = DEFAULT_SERVER_NAME,
        version: str = DEFAULT_SERVER_VERSION,
        require_initialize: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """创建 server（未初始化状态）。"""

        self._runner = runner
        self._name = name
        self._version = version
        self._require_initialize = require_initialize
        self._logger = logger or _module_logger
        self._initialized = False

    @property
    def initialized(self) -> bool:
        """是否已收到 `initialize`。"""

        return self._initialized

    # ---- 消息入口 ----

    def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        """
        处理一行原始文本。

        返回：
        - 响应 dict；notification 或空行返回 None
        """

        if not line.strip():
            return None
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            self._logger.warning("parse error: %s", e)
            return error_response(None, PARSE_ERROR, "Parse error", str(e))
        return self.handle_message(message)

    def handle_message(self, message: Any) -> Optional[Dict[str, Any]]:
        """
        处理一条已解析的 JSON-RPC 消息。

        返回：
        - 响应 dict；notification 返回 None
        """

        if not isinstance(message, dict):
            return error_response(None, INVALID_REQUEST, "Invalid Request")

        is_notification = "id" not in message
        request_id = message.get("id")
        method = message.get("method")

        if is_notification:
            if method in _LIFECYCLE_NOTIFICATIONS:
                self._logger.debug("client initialized notification received")
            else:
                self._logger.debug("ignoring notification: %s", method)
            return None

        if not isinstance(method, str) or not method:
            return error_response(request_id, INVALID_REQUEST, "Invalid Request")

        self._logger.info("request: %s", method)
        if self._require_initialize and not self._initialized and method not in _ALWAYS_ALLOWED:
            return error_response(request_id, SERVER_NOT_INITIALIZED, "Server not initialized")

        params = message.get("params")
        try:
            result = self._dispatch(method, params)
        except JsonRpcError as e:
            return error_response(request_id, e.code, e.message, e.data)
        except Exception as e:
            self._logger.error("internal error handling %s", method, exc_info=True)
            return error_response(request_id, INTERNAL_ERROR, "Internal error", str(e))
        return success_response(request_id, result)

    def _dispatch(self, method: str, params: Any) -> Any:
        """
        路由方法到 handler。

        异常：
        - JsonRpcError：未知方法 / 参数非法
        """

        if method == "initialize":
            return self._handle_initialize(params)
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": [t.model_dump(by_alias=True, exclude_none=True) for t in self.tool_catalog()]}
        if method == "tools/call":
            return self._handle_tools_call(params)
        if method == "resources/list":
            return {"resources": []}
        if method == "resources/read":
            raise JsonRpcError(METHOD_NOT_FOUND, "Resources not supported")
        if method == "prompts/list":
            return {"prompts": []}
        if method == "prompts/get":
            raise JsonRpcError(METHOD_NOT_FOUND, "Prompts not supported")
        raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")

    def _handle_initialize(self, params: Any) -> Dict[str, Any]:
        """处理 `initialize`：记录客户端信息并进入 Initialized 状态。"""

        if isinstance(params, dict):
            client = params.get("clientInfo") or {}
            if isinstance(client, dict):
                self._logger.info(
                    "initialize from client %s %s (protocol %s)",
                    client.get("name", "?"),
                    client.get("version", "?"),
                    params.get("protocolVersion", "?"),
                )
        self._initialized = True
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": self._name, "version": self._version},
        }

    # ---- 工具目录 ----

    def tool_catalog(self) -> List[ToolInfo]:
        """返回固定的 MCP 工具目录（invoke_agent 的 agent 参数带已配置 agent 名的枚举）。"""

        agent_names = self._runner.list_agents()
        return [
            ToolInfo(
                name="invoke_agent",
                description="Invoke a specific agent with an input prompt",
                input_schema=InputSchema(
                    properties={
                        "agent": Property(
                            type="string",
                            description="Name of the agent to invoke",
                            enum=agent_names or None,
                        ),
                        "input": Property(type="string", description="Input prompt for the agent"),
                    },
                    required=["agent", "input"],
                ),
            ),
            ToolInfo(
                name="invoke_parallel",
                description="Invoke multiple agents in parallel with the same input",
                input_schema=InputSchema(
                    properties={
                        "agents": Property(type="string", description="Comma-separated list of agent names"),
                        "input": Property(type="string", description="Input prompt for all agents"),
                    },
                    required=["agents", "input"],
                ),
            ),
            ToolInfo(
                name="list_agents",
                description="List all available agents and their descriptions",
                input_schema=InputSchema(),
            ),
            ToolInfo(
                name="read_file",
                description="Read the contents of a file in the workspace",
                input_schema=InputSchema(
                    properties={"path": Property(type="string", description="Path to the file (relative to workspace)")},
                    required=["path"],
                ),
            ),
            ToolInfo(
                name="glob_files",
                description="Find files matching a glob pattern",
                input_schema=InputSchema(
                    properties={"pattern": Property(type="string", description="Glob pattern (e.g., '**/*.py')")},
                    required=["pattern"],
                ),
            ),
            ToolInfo(
                name="grep_files",
                description="Search for a pattern in files",
                input_schema=InputSchema(
                    properties={
                        "pattern": Property(type="string", description="Regex pattern to search for"),
                        "file_pattern": Property(type="string", description="Optional file name pattern filter"),
                    },
                    required=["pattern"],
                ),
            ),
            ToolInfo(
                name="run_command",
                description="Execute a shell command in the workspace",
                input_schema=InputSchema(
                    properties={"command": Property(type="string", description="Shell command to execute")},
                    required=["command"],
                ),
            ),
        ]

    # ---- tools/call ----

    def _handle_tools_call(self, params: Any) -> Dict[str, Any]:
        """
        处理 `tools/call`。

        异常：
        - JsonRpcError(INVALID_PARAMS)：params 不是 object / name 缺失 / arguments 不是 object
        - JsonRpcError(METHOD_NOT_FOUND)：未知工具
        """

        if not isinstance(params, dict):
            raise JsonRpcError(INVALID_PARAMS, "Invalid params", "params must be an object")
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise JsonRpcError(INVALID_PARAMS, "Invalid params", "name must be a non-empty string")
        args = params.get("arguments")
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise JsonRpcError(INVALID_PARAMS, "Invalid params", "arguments must be an object")

        handler = self._tool_handler(name)
        if handler is None:
            raise JsonRpcError(METHOD_NOT_FOUND, "Unknown tool", name)

        self._logger.info("tool call: %s", name)
        try:
            result = handler(args)
        except _MissingArgument as e:
            result = CallToolResult.error(str(e))
        except (LocalAgentsError, OSError, ValueError, RuntimeError) as e:
            result = CallToolResult.error(e)
        return result.to_wire()

    def _tool_handler(self, name: str) -> Optional[Callable[[Dict[str, Any]], CallToolResult]]:
        """按工具名返回 handler；未知返回 None。"""

        if name == "invoke_agent":
            return self._call_invoke_agent
        if name == "invoke_parallel":
            return self._call_invoke_parallel
        if name == "list_agents":
            return self._call_list_agents
        if name == "read_file":
            return self._call_read_file
        if name == "glob_files":
            return self._call_glob_files
        if name == "grep_files":
            return self._call_grep_files
        if name == "run_command":
            return self._call_run_command
        return None

    def _call_invoke_agent(self, args: Dict[str, Any]) -> CallToolResult:
        """invoke_agent：运行单个 agent。"""

        agent, text = _require_str(args, "agent", "input")
        try:
            result = self._runner.invoke(agent, text)
        except Exception as e:
            return CallToolResult.error(e)
        return CallToolResult.text(_result_text(result), is_error=not result.success)

    def _call_invoke_parallel(self, args: Dict[str, Any]) -> CallToolResult:
        """invoke_parallel：逗号分隔的 agent 列表并行运行同一输入。"""

        agents_raw, text = _require_str(args, "agents", "input")
        names = [n.strip() for n in agents_raw.split(",") if n.strip()]
        if not names:
            raise _MissingArgument("agents and input are required")
        results = self._runner.invoke_parallel([AgentTask(agent=n, input=text) for n in names])

        parts: List[str] = []
        has_error = False
        for r in results:
            status = "SUCCESS" if r.success else "FAILED"
            has_error = has_error or not r.success
            parts.append(f"## {r.agent} [{status}]\n\n{_result_text(r)}\n\n")
        return CallToolResult.text("".join(parts), is_error=has_error)

    def _call_list_agents(self, args: Dict[str, Any]) -> CallToolResult:
        """list_agents：Markdown 形式的 agent 列表。"""

        parts = ["# Available Agents\n\n"]
        for info in self._runner.list_agent_info():
            parts.append(f"## {info.name}\n{info.description}\n\n")
        return CallToolResult.text("".join(parts))

    def _call_read_file(self, args: Dict[str, Any]) -> CallToolResult:
        """read_file：读取 workspace 文件。"""

        (path,) = _require_str(args, "path")
        return CallToolResult.text(self._runner.sandbox.read_file(path))

    def _call_glob_files(self, args: Dict[str, Any]) -> CallToolResult:
        """glob_files：按模式列出文件。"""

        (pattern,) = _require_str(args, "pattern")
        files = self._runner.sandbox.glob_files(pattern)
        return CallToolResult.text("\n".join(files) if files else "No files found")

    def _call_grep_files(self, args: Dict[str, Any]) -> CallToolResult:
        """grep_files：正则搜索，每行 `file:line: content`。"""

        (pattern,) = _require_str(args, "pattern")
        file_pattern = args.get("file_pattern")
        if not isinstance(file_pattern, str):
            file_pattern = None
        matches = self._runner.sandbox.grep_files(pattern, file_pattern or None)
        if not matches:
            return CallToolResult.text("No matches found")
        return CallToolResult.text("".join(f"{m.file}:{m.line}: {m.content}\n" for m in matches))

    def _call_run_command(self, args: Dict[str, Any]) -> CallToolResult:
        """run_command：`sh -c` 执行；非零退出码或超时时 `isError=true`。"""

        (command,) = _require_str(args, "command")
        result = self._runner.sandbox.run_shell(command)
        text = result.stdout
        if result.stderr:
            if text:
                text += "\n"
            text += "STDERR:\n" + result.stderr
        if result.timed_out:
            if text:
                text += "\n"
            text += "Command timed out"
        return CallToolResult.text(text, is_error=not result.success)

    # ---- 主循环 ----

    def serve(self, transport: LineTransport, *, cancel_event: Optional[threading.Event] = None) -> None:
        """
        顺序处理消息直到 EOF 或 `cancel_event` 被置位。

        说明：
        - 取消只在两条消息之间检查；进行中的请求会完成。
        - 超长行返回 `-32600`（id 为 null），会话继续。

        异常：
        - OSError / ValueError：写 stdout 失败（致命）
        """

        self._logger.info("starting MCP server %s %s", self._name, self._version)
        while True:
            if cancel_event is not None and cancel_event.is_set():
                self._logger.info("MCP server cancelled")
                return
            message = transport.read_message()
            if message is None:
                self._logger.info("stdin closed; MCP server exiting")
                return
            if message is OVERSIZED:
                self._logger.warning("discarded oversized message")
                transport.write_message(
                    error_response(None, INVALID_REQUEST, "Invalid Request", "message exceeds maximum size")
                )
                continue
            response = self.handle_line(str(message))
            if response is not None:
                transport.write_message(response)

    def serve_stdio(
        self,
        *,
        max_message_bytes: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """在进程 stdin/stdout 上运行 `serve`。"""

        if max_message_bytes is None:
            transport = LineTransport.stdio()
        else:
            transport = LineTransport.stdio(max_message_bytes=max_message_bytes)
        self.serve(transport, cancel_event=cancel_event)
