"""
运行时错误分类（异常类型）。

说明：
- 沙箱/工具/注册表/配置错误统一继承 `FrameworkError`（英文 `code/message/details`），
  上层（MCP server、CLI）据此决定输出形态：
  - MCP：`isError` content block（文本为 `Error: <message>`）
  - CLI：结构化 JSON + 非零退出码
- Agent 级错误不会以异常形式越过 `EmbeddedAgent.invoke`，而是写入 `AgentResult.error`。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class LocalAgentsError(Exception):
    """运行时内部错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """框架结构化问题对象（可用于 CLI 的 JSON 错误输出）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(LocalAgentsError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回错误消息（MCP 文本输出与 `Error: ...` 折叠均依赖此形态）。"""

        return self.message

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UserError(FrameworkError):
    """调用方输入/配置导致的错误。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        """创建 `UserError`。

        参数：
        - `message`：可读错误信息
        - `code`：错误码（默认 `USER_ERROR`）
        - `details`：结构化补充信息
        """

        super().__init__(code=code, message=message, details=details or {})


class PathEscapeError(UserError):
    """解析后的路径落在 workspace root 之外。"""

    def __init__(self, path: str) -> None:
        """创建路径越界错误；`path` 为调用方传入的原始路径。"""

        super().__init__(f"path escapes workspace: {path}", code="PATH_ESCAPE", details={"path": path})


class FileTooLargeError(UserError):
    """文件大小超过读取上限。"""

    def __init__(self, size: int, limit: int) -> None:
        """创建文件过大错误。

        参数：
        - `size`：文件实际字节数
        - `limit`：允许读取的最大字节数
        """

        super().__init__(
            f"file too large: {size} bytes (max {limit})",
            code="FILE_TOO_LARGE",
            details={"size": size, "max": limit},
        )


class InvalidPatternError(UserError):
    """正则表达式无法编译。"""

    def __init__(self, pattern: str, reason: str) -> None:
        """创建非法模式错误；`reason` 为 `re.error` 的文本。"""

        super().__init__(
            f"invalid pattern: {reason}",
            code="INVALID_PATTERN",
            details={"pattern": pattern, "reason": reason},
        )


class UnknownToolError(UserError):
    """工具名不在注册表中。"""

    def __init__(self, name: str) -> None:
        """创建未知工具错误。"""

        super().__init__(f"unknown tool: {name}", code="UNKNOWN_TOOL", details={"tool": name})


class AgentNotFoundError(UserError):
    """Runner 注册表中不存在该 agent。"""

    def __init__(self, name: str) -> None:
        """创建 agent 不存在错误。"""

        super().__init__(f"agent not found: {name}", code="AGENT_NOT_FOUND", details={"agent": name})


class ToolArgumentError(UserError):
    """工具参数不满足 schema（缺字段、类型错误、多余字段）。"""

    def __init__(self, tool: str, reason: str) -> None:
        """创建工具参数错误。"""

        super().__init__(
            f"invalid arguments for {tool}: {reason}",
            code="TOOL_ARGS_INVALID",
            details={"tool": tool, "reason": reason},
        )


class ConfigError(UserError):
    """配置文件缺失、格式错误或校验失败。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        """创建配置错误。"""

        super().__init__(message, code="CONFIG_INVALID", details=details or {})


class CommandStartError(FrameworkError):
    """子进程无法启动（可执行文件缺失、权限不足等）。"""

    def __init__(self, command: str, reason: str) -> None:
        """创建命令启动失败错误。"""

        super().__init__(
            code="COMMAND_START_FAILED",
            message=f"failed to start command: {reason}",
            details={"command": command, "reason": reason},
        )


class LlmError(LocalAgentsError):
    """LLM 通信/协议错误（网络、限流、响应解析等）。"""
