"""
Tool 协议（ToolSpec / ToolCall / Tool）。

本模块只定义最小协议：
- ToolSpec：LLM 可见的工具定义（OpenAI function calling 兼容 JSON schema）
- ToolCall：一次调用请求（id/name/arguments）
- Tool：能力对象协议（name/description/spec/execute）
- SandboxTool：绑定 `WorkspaceSandbox` 的内置工具基类（参数用 pydantic 校验）
- tool_spec_to_openai_tool：将 ToolSpec 映射为 chat.completions tools[] 形状
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Dict, Mapping, Protocol, Type, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from local_agents.core.errors import ToolArgumentError

if TYPE_CHECKING:
    from local_agents.sandbox import WorkspaceSandbox


class ToolSpec(BaseModel):
    """
    Tool 定义（function calling 兼容）。

    字段：
    - name：工具名（注册表内唯一，稳定）
    - description：工具说明
    - parameters：JSON Schema（object schema）
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object"})


class ToolCall(BaseModel):
    """
    Tool 调用（LLM 产出）。

    字段：
    - id：本次调用的不透明 id（用于关联回注的 tool message）
    - name：工具名
    - arguments：解析后的参数 dict
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class Tool(Protocol):
    """能力对象协议：按名字被 agent 调用，失败时抛异常。"""

    @property
    def name(self) -> str:
        """工具名。"""

    @property
    def description(self) -> str:
        """工具说明。"""

    @property
    def spec(self) -> ToolSpec:
        """LLM 可见的工具定义。"""

    def execute(self, arguments: Mapping[str, Any]) -> Any:
        """执行工具并返回可 JSON 序列化的结果。"""


class SandboxTool:
    """
    绑定 `WorkspaceSandbox` 的内置工具基类。

    子类需提供：
    - `SPEC`：ToolSpec 常量
    - `ARGS_MODEL`：pydantic 参数模型（extra="forbid"）
    - `run(args)`：参数已校验后的执行逻辑
    """

    SPEC: ClassVar[ToolSpec]
    ARGS_MODEL: ClassVar[Type[BaseModel]]

    def __init__(self, sandbox: "WorkspaceSandbox") -> None:
        """创建工具实例；`sandbox` 为所有原语的唯一入口。"""

        self._sandbox = sandbox

    @property
    def name(self) -> str:
        """工具名（来自 SPEC）。"""

        return self.SPEC.name

    @property
    def description(self) -> str:
        """工具说明（来自 SPEC）。"""

        return self.SPEC.description

    @property
    def spec(self) -> ToolSpec:
        """LLM 可见的工具定义。"""

        return self.SPEC

    def execute(self, arguments: Mapping[str, Any]) -> Any:
        """
        校验参数后执行。

        异常：
        - ToolArgumentError：参数缺失/类型错误/多余字段
        - 其它异常：由 sandbox 原语抛出，原样向上传递
        """

        try:
            args = self.ARGS_MODEL.model_validate(dict(arguments or {}))
        except ValidationError as e:
            reasons = "; ".join(
                f"{'.'.join(str(p) for p in err.get('loc', ())) or '<root>'}: {err.get('msg', '')}" for err in e.errors()
            )
            raise ToolArgumentError(self.name, reasons) from e
        return self.run(args)

    def run(self, args: Any) -> Any:
        """子类实现：执行已校验的参数。"""

        raise NotImplementedError


def tool_spec_to_openai_tool(spec: ToolSpec) -> Dict[str, Any]:
    """
    将 `ToolSpec` 映射为 OpenAI chat.completions 的 tools[] entry。

    返回形状（function calling）：
    {
      "type": "function",
      "function": { "name": "...", "description": "...", "parameters": {...} }
    }
    """

    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.parameters,
        },
    }
