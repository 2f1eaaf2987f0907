"""
内置工具：read（读取 workspace 内的文本文件）。
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from local_agents.tools.protocol import SandboxTool, ToolSpec


class _ReadArgs(BaseModel):
    """read 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    path: str


READ_SPEC = ToolSpec(
    name="read",
    description="Read the contents of a file",
    parameters={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to read"},
        },
        "required": ["path"],
    },
)


class ReadTool(SandboxTool):
    """返回文件全文（受 `max_file_bytes` 限制）。"""

    SPEC = READ_SPEC
    ARGS_MODEL = _ReadArgs

    def run(self, args: _ReadArgs) -> str:
        """读取文件内容。"""

        return self._sandbox.read_file(args.path)
