"""Tool System（协议 + 注册表 + 内置工具）。"""

from __future__ import annotations

from local_agents.tools.protocol import SandboxTool, Tool, ToolCall, ToolSpec, tool_spec_to_openai_tool
from local_agents.tools.registry import (
    BUILTIN_TOOL_SPECS,
    build_tool_definitions,
    builtin_tool_names,
    create_tools,
    is_known_tool,
    tool_parameters,
)

__all__ = [
    "BUILTIN_TOOL_SPECS",
    "SandboxTool",
    "Tool",
    "ToolCall",
    "ToolSpec",
    "build_tool_definitions",
    "builtin_tool_names",
    "create_tools",
    "is_known_tool",
    "tool_parameters",
    "tool_spec_to_openai_tool",
]
