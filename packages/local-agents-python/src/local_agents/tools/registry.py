"""
Tool Registry：工具名 → 能力对象 / JSON schema 的静态表。

说明：
- 注册表是静态的：只有 `read/write/glob/grep/shell` 五个名字；未知名字在构造期报错。
- 每个 agent 通过 `create_tools(sandbox, names)` 得到自己的工具列表（共享同一 sandbox）。
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Type

from local_agents.core.errors import UnknownToolError
from local_agents.sandbox import WorkspaceSandbox
from local_agents.tools.builtin import GlobTool, GrepTool, ReadTool, ShellTool, WriteTool
from local_agents.tools.protocol import SandboxTool, Tool, ToolSpec

_BUILTIN_TOOLS: Dict[str, Type[SandboxTool]] = {
    cls.SPEC.name: cls for cls in (ReadTool, WriteTool, GlobTool, GrepTool, ShellTool)
}

BUILTIN_TOOL_SPECS: Dict[str, ToolSpec] = {name: cls.SPEC for name, cls in _BUILTIN_TOOLS.items()}


def builtin_tool_names() -> List[str]:
    """返回全部内置工具名（稳定顺序）。"""

    return list(_BUILTIN_TOOLS)


def is_known_tool(name: str) -> bool:
    """判断工具名是否在静态表中。"""

    return name in _BUILTIN_TOOLS


def create_tools(sandbox: WorkspaceSandbox, names: Iterable[str]) -> List[Tool]:
    """
    按名字构造工具实例（保持输入顺序）。

    参数：
    - sandbox：所有工具共享的沙箱
    - names：工具名列表

    异常：
    - UnknownToolError：存在未知工具名
    """

    tools: List[Tool] = []
    for name in names:
        cls = _BUILTIN_TOOLS.get(name)
        if cls is None:
            raise UnknownToolError(name)
        tools.append(cls(sandbox))
    return tools


def tool_parameters(name: str) -> Dict[str, Any]:
    """返回工具参数 schema；未知名字返回 `{"type": "object"}`。"""

    spec = BUILTIN_TOOL_SPECS.get(name)
    if spec is None:
        return {"type": "object"}
    return dict(spec.parameters)


def build_tool_definitions(tools: Iterable[Tool]) -> List[ToolSpec]:
    """把工具实例列表转换为 LLM 可见的 ToolSpec 列表。"""

    return [ToolSpec(name=t.name, description=t.description, parameters=tool_parameters(t.name)) for t in tools]
