"""
内置工具：grep（正则搜索 workspace 文本文件）。

说明：
- 跳过隐藏目录与二进制文件；`file_pattern` 只匹配文件名（basename）。
- 返回 `[{"file", "line", "content"}]`，line 从 1 开始。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from local_agents.tools.protocol import SandboxTool, ToolSpec


class _GrepArgs(BaseModel):
    """grep 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    pattern: str
    file_pattern: Optional[str] = None


GREP_SPEC = ToolSpec(
    name="grep",
    description="Search for a pattern in files",
    parameters={
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Regex pattern to search for"},
            "file_pattern": {"type": "string", "description": "Optional file name pattern to filter files"},
        },
        "required": ["pattern"],
    },
)


class GrepTool(SandboxTool):
    """返回命中列表。"""

    SPEC = GREP_SPEC
    ARGS_MODEL = _GrepArgs

    def run(self, args: _GrepArgs) -> List[Dict[str, Any]]:
        """执行正则搜索。"""

        matches = self._sandbox.grep_files(args.pattern, args.file_pattern or None)
        return [m.model_dump() for m in matches]
