"""
MCP / JSON-RPC 2.0 协议类型与响应构造。

说明：
- 错误码遵循 JSON-RPC 2.0 标准集合；`-32002` 用于严格模式下“未初始化”的拒绝。
- 工具目录与 tools/call 结果使用 pydantic 建模，输出时 `by_alias=True, exclude_none=True`。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

PROTOCOL_VERSION = "2024-11-05"
JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_NOT_INITIALIZED = -32002


class JsonRpcError(Exception):
    """协议级错误：由 server 转换为 JSON-RPC error 对象，会话继续。"""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        """创建协议错误。

        参数：
        - `code`：JSON-RPC 错误码
        - `message`：简短错误消息
        - `data`：可选的附加信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


class Property(BaseModel):
    """JSON Schema 属性。"""

    model_config = ConfigDict(extra="forbid")

    type: str
    description: Optional[str] = None
    enum: Optional[List[str]] = None


class InputSchema(BaseModel):
    """工具输入的 JSON Schema（object）。"""

    model_config = ConfigDict(extra="forbid")

    type: str = "object"
    properties: Dict[str, Property] = Field(default_factory=dict)
    required: Optional[List[str]] = None


class ToolInfo(BaseModel):
    """tools/list 中的一项。"""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    description: str
    input_schema: InputSchema = Field(alias="inputSchema")


class ContentBlock(BaseModel):
    """tools/call 结果中的内容块（本实现只产出 text）。"""

    model_config = ConfigDict(extra="forbid")

    type: str = "text"
    text: str = ""


class CallToolResult(BaseModel):
    """tools/call 的结果。"""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    content: List[ContentBlock] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def text(cls, text: str, *, is_error: bool = False) -> "CallToolResult":
        """单个 text 块的结果。"""

        return cls(content=[ContentBlock(text=text)], is_error=is_error)

    @classmethod
    def error(cls, err: BaseException | str) -> "CallToolResult":
        """错误结果：文本为 `Error: <message>`，`isError=true`。"""

        return cls(content=[ContentBlock(text=f"Error: {err}")], is_error=True)

    def to_wire(self) -> Dict[str, Any]:
        """序列化为 wire 形态。"""

        return self.model_dump(by_alias=True, exclude_none=True)


def success_response(request_id: Any, result: Any) -> Dict[str, Any]:
    """构造成功响应。"""

    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    """构造错误响应；`data` 为 None 时省略。"""

    err: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": err}
