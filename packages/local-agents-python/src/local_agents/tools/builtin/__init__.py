"""
内置工具（builtin tools）。

本包提供绑定 `WorkspaceSandbox` 的五个能力对象：
- read：读取文件
- write：写入文件
- glob：按模式查找文件
- grep：正则搜索
- shell：执行 shell 命令
"""

from __future__ import annotations

from local_agents.tools.builtin.glob import GLOB_SPEC, GlobTool
from local_agents.tools.builtin.grep import GREP_SPEC, GrepTool
from local_agents.tools.builtin.read import READ_SPEC, ReadTool
from local_agents.tools.builtin.shell import SHELL_SPEC, ShellTool
from local_agents.tools.builtin.write import WRITE_SPEC, WriteTool

__all__ = [
    "GLOB_SPEC",
    "GREP_SPEC",
    "READ_SPEC",
    "SHELL_SPEC",
    "WRITE_SPEC",
    "GlobTool",
    "GrepTool",
    "ReadTool",
    "ShellTool",
    "WriteTool",
]
