"""
内置工具：shell（`sh -c` 执行命令，cwd 固定为 workspace root）。

说明：
- 非零退出码不视为工具失败：结果中带 `exit_code/success`，由模型自行判断。
- 超时后进程组被终止，结果 `timed_out=true`、`exit_code=null`。
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict

from local_agents.tools.protocol import SandboxTool, ToolSpec


class _ShellArgs(BaseModel):
    """shell 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    command: str


SHELL_SPEC = ToolSpec(
    name="shell",
    description="Execute a shell command",
    parameters={
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "Shell command to execute"},
        },
        "required": ["command"],
    },
)


class ShellTool(SandboxTool):
    """执行 shell 命令并返回结构化结果。"""

    SPEC = SHELL_SPEC
    ARGS_MODEL = _ShellArgs

    def run(self, args: _ShellArgs) -> Dict[str, Any]:
        """执行命令；返回 `CommandResult` 字段 + `success`。"""

        result = self._sandbox.run_shell(args.command)
        payload = result.model_dump()
        payload["success"] = result.success
        return payload
