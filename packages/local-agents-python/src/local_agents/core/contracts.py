"""
核心契约（AgentSpec / AgentResult / AgentTask / OrchestratedTask / OrchestratedResult）。

说明：
- 全部为 pydantic 模型：对外 JSON 形态（CLI 输出）直接用 `model_dump(mode="json")`。
- AgentSpec 与 AgentResult 不可变；编排结果保持输入顺序。
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

SUMMARY_PREVIEW_CHARS = 200


class AgentSpec(BaseModel):
    """
    单个 agent 的静态描述（进程生命周期内不变）。

    字段：
    - name：全局唯一名称
    - description：用于 list_agents 展示
    - instructions：system prompt 文本（或 `.md` 文件路径，加载由 EmbeddedAgent 负责）
    - tools：允许使用的工具名
    - model：可选模型覆盖
    - max_tokens：单次补全 token 上限
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    instructions: str = Field(min_length=1)
    tools: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    max_tokens: int = Field(default=4096, ge=1)


class AgentResult(BaseModel):
    """一次 agent 调用的结果（agent 级错误写入 `error`，不抛异常）。"""

    model_config = ConfigDict(frozen=True)

    agent: str
    input: str
    output: str = ""
    success: bool = False
    error: Optional[str] = None

    @classmethod
    def failed(cls, agent: str, input: str, error: str, *, output: str = "") -> "AgentResult":
        """构造失败结果。"""

        return cls(agent=agent, input=input, output=output, success=False, error=error)


class AgentTask(BaseModel):
    """编排输入中的一项：agent 名 + 输入文本。"""

    model_config = ConfigDict(frozen=True)

    agent: str
    input: str


class AgentInfo(BaseModel):
    """agent 的对外可见信息。"""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""


class OrchestrationMode(str, Enum):
    """编排模式。"""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class OrchestratedTask(BaseModel):
    """
    编排任务：同一输入交给多个 agent，按 mode 执行。

    说明：
    - `mode` 保持为字符串：未知模式在 `Runner.execute_orchestrated` 中报错，而不是在构造期。
    """

    name: str = ""
    agents: List[str] = Field(default_factory=list)
    input: str = ""
    mode: str = OrchestrationMode.PARALLEL.value


class OrchestratedResult(BaseModel):
    """编排结果：`results` 与 `task.agents` 顺序一致。"""

    task: OrchestratedTask
    mode: str
    results: List[AgentResult] = Field(default_factory=list)

    def all_successful(self) -> bool:
        """全部子结果成功时为 True（空结果视为成功）。"""

        return all(r.success for r in self.results)

    def summary(self) -> str:
        """每个子结果一行：`[agent] SUCCESS|FAILED: <输出预览>`。"""

        lines: List[str] = []
        for r in self.results:
            status = "SUCCESS" if r.success else "FAILED"
            lines.append(f"[{r.agent}] {status}: {_truncate(r.output, SUMMARY_PREVIEW_CHARS)}\n")
        return "".join(lines)


def _truncate(text: str, limit: int) -> str:
    """超过 `limit` 个字符时截断并追加 `...`。"""

    if len(text) <= limit:
        return text
    return text[:limit] + "..."
