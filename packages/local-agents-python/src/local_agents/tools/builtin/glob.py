"""
内置工具：glob（按 glob 模式查找文件，支持 `**`）。
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict

from local_agents.tools.protocol import SandboxTool, ToolSpec


class _GlobArgs(BaseModel):
    """glob 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    pattern: str


GLOB_SPEC = ToolSpec(
    name="glob",
    description="Find files matching a glob pattern",
    parameters={
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Glob pattern to match files"},
        },
        "required": ["pattern"],
    },
)


class GlobTool(SandboxTool):
    """返回 workspace 相对路径列表。"""

    SPEC = GLOB_SPEC
    ARGS_MODEL = _GlobArgs

    def run(self, args: _GlobArgs) -> List[str]:
        """执行 glob 匹配。"""

        return self._sandbox.glob_files(args.pattern)
