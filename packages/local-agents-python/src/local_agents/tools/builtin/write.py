"""
内置工具：write（整体覆盖写文本文件，自动创建父目录）。
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict

from local_agents.tools.protocol import SandboxTool, ToolSpec


class _WriteArgs(BaseModel):
    """write 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    path: str
    content: str


WRITE_SPEC = ToolSpec(
    name="write",
    description="Write content to a file",
    parameters={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to write"},
            "content": {"type": "string", "description": "Content to write to the file"},
        },
        "required": ["path", "content"],
    },
)


class WriteTool(SandboxTool):
    """写入文件并返回写入摘要。"""

    SPEC = WRITE_SPEC
    ARGS_MODEL = _WriteArgs

    def run(self, args: _WriteArgs) -> Dict[str, Any]:
        """写入文件；返回 `{"path", "bytes"}`。"""

        wrote = self._sandbox.write_file(args.path, args.content)
        return {"path": args.path, "bytes": wrote}
