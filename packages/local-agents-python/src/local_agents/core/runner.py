"""
Runner：按名字索引的 agent 注册表 + 多 agent 编排。

支持的执行模式：
- invoke：单个 agent，同步
- invoke_parallel：每个任务一个 worker 线程，结果按输入下标写入预分配槽位
- invoke_sequential：逐个执行，把成功结果累积为上下文传给后续 agent
- execute_orchestrated：按 OrchestratedTask.mode 选择 parallel / sequential

约束：
- 注册表由读写锁保护：注册（写）发生在服务之前，之后只有并发读。
- 批量执行中，单个任务失败（包括 agent 不存在）只影响它自己的槽位。
- 并行批次超时：未完成槽位记为失败并立即返回；批次取消标志被置位，
  被放弃的 agent loop 在下一次迭代边界协作退出。
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from local_agents.core.agent import EmbeddedAgent
from local_agents.core.contracts import (
    AgentInfo,
    AgentResult,
    AgentTask,
    OrchestratedResult,
    OrchestratedTask,
    OrchestrationMode,
)
from local_agents.core.errors import AgentNotFoundError
from local_agents.sandbox import WorkspaceSandbox

PARALLEL_TIMEOUT_ERROR = "parallel execution timed out"

_module_logger = logging.getLogger(__name__)


class ReadWriteLock:
    """
    简单读写锁（多读单写；不保证写者优先）。

    说明：
    - 用 `threading.Condition` 实现；读锁可并发持有，写锁独占。
    """

    def __init__(self) -> None:
        """创建读写锁。"""

        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        """持有读锁的上下文。"""

        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        """持有写锁的上下文。"""

        with self._cond:
            while self._writer or self._readers > 0:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _any_of(*checkers: Optional[Callable[[], bool]]) -> Callable[[], bool]:
    """合并多个取消检测回调：任一返回 True 即视为取消。"""

    active = [c for c in checkers if c is not None]

    def _check() -> bool:
        """依次调用已配置的检测回调。"""

        return any(c() for c in active)

    return _check


class Runner:
    """
    多 agent 编排器。

    参数：
    - sandbox：所有 agent 共享的 WorkspaceSandbox
    - parallel_timeout_sec：`invoke_parallel` 的默认总超时（None 表示不限制）
    - logger：可注入的 logger（默认模块 logger）
    """

    def __init__(
        self,
        sandbox: WorkspaceSandbox,
        *,
        parallel_timeout_sec: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """创建空注册表的 Runner。"""

        self._sandbox = sandbox
        self._agents: Dict[str, EmbeddedAgent] = {}
        self._lock = ReadWriteLock()
        self._parallel_timeout_sec = parallel_timeout_sec
        self._logger = logger or _module_logger

    @property
    def workspace(self) -> Path:
        """workspace 根目录。"""

        return self._sandbox.root

    @property
    def sandbox(self) -> WorkspaceSandbox:
        """共享沙箱。"""

        return self._sandbox

    def register(self, agent: EmbeddedAgent) -> None:
        """
        注册 agent。

        异常：
        - ValueError：同名 agent 已注册
        """

        with self._lock.write_locked():
            if agent.name in self._agents:
                raise ValueError(f"duplicate agent name: {agent.name}")
            self._agents[agent.name] = agent
        self._logger.info("registered agent: %s", agent.name)

    def get_agent(self, name: str) -> Optional[EmbeddedAgent]:
        """按名字查找 agent；不存在返回 None。"""

        with self._lock.read_locked():
            return self._agents.get(name)

    def get_agent_info(self, name: str) -> AgentInfo:
        """
        返回单个 agent 的信息。

        异常：
        - AgentNotFoundError：agent 不存在
        """

        agent = self.get_agent(name)
        if agent is None:
            raise AgentNotFoundError(name)
        return agent.info()

    def list_agents(self) -> List[str]:
        """返回全部 agent 名（注册顺序）。"""

        with self._lock.read_locked():
            return list(self._agents)

    def list_agent_info(self) -> List[AgentInfo]:
        """返回全部 agent 的信息（注册顺序）。"""

        with self._lock.read_locked():
            return [a.info() for a in self._agents.values()]

    def invoke(
        self,
        agent_name: str,
        input: str,
        *,
        cancel_checker: Optional[Callable[[], bool]] = None,
    ) -> AgentResult:
        """
        同步运行单个 agent。

        异常：
        - AgentNotFoundError：agent 不存在
        """

        agent = self.get_agent(agent_name)
        if agent is None:
            raise AgentNotFoundError(agent_name)
        self._logger.info("invoking agent: %s", agent_name)
        result = agent.invoke(input, cancel_checker=cancel_checker)
        self._logger.info("agent %s completed: success=%s", agent_name, result.success)
        return result

    def _invoke_slot(self, task: AgentTask, cancel_checker: Callable[[], bool]) -> AgentResult:
        """批量执行中的单个槽位：任何异常都折叠为失败结果。"""

        try:
            return self.invoke(task.agent, task.input, cancel_checker=cancel_checker)
        except Exception as e:
            return AgentResult.failed(task.agent, task.input, str(e))

    def invoke_parallel(
        self,
        tasks: Sequence[AgentTask],
        *,
        timeout_sec: Optional[float] = None,
        cancel_checker: Optional[Callable[[], bool]] = None,
    ) -> List[AgentResult]:
        """
        并发运行多个任务，结果顺序与输入一致。

        参数：
        - tasks：AgentTask 序列；为空时直接返回空列表
        - timeout_sec：总超时（None 时使用构造参数 `parallel_timeout_sec`）
        - cancel_checker：外部取消回调（与批次取消标志合并后传给每个 agent）

        异常：
        - ValueError：tasks 不是 AgentTask 序列
        """

        _validate_tasks(tasks)
        if not tasks:
            return []
        timeout = self._parallel_timeout_sec if timeout_sec is None else timeout_sec
        self._logger.info("starting parallel execution of %d agents", len(tasks))

        batch_cancel = threading.Event()
        checker = _any_of(batch_cancel.is_set, cancel_checker)
        results: List[Optional[AgentResult]] = [None] * len(tasks)
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="local-agent")
        futures = {pool.submit(self._invoke_slot, task, checker): idx for idx, task in enumerate(tasks)}
        done, not_done = concurrent.futures.wait(futures, timeout=timeout)

        for fut in done:
            results[futures[fut]] = fut.result()
        if not_done:
            batch_cancel.set()
            for fut in not_done:
                idx = futures[fut]
                results[idx] = AgentResult.failed(tasks[idx].agent, tasks[idx].input, PARALLEL_TIMEOUT_ERROR)
            self._logger.warning("parallel execution timed out; abandoned %d task(s)", len(not_done))
        pool.shutdown(wait=not not_done, cancel_futures=True)

        final = [r for r in results if r is not None]
        ok = sum(1 for r in final if r.success)
        self._logger.info("parallel execution completed: %d/%d successful", ok, len(final))
        return final

    def invoke_sequential(
        self,
        tasks: Sequence[AgentTask],
        *,
        cancel_checker: Optional[Callable[[], bool]] = None,
    ) -> List[AgentResult]:
        """
        逐个运行任务，把成功输出累积为上下文。

        说明：
        - 第 i 个任务（i > 0 且上下文非空）的输入为
          `Previous context:\\n<ctx>\\n\\nCurrent task:\\n<input>`。
        - 失败任务不更新上下文，也不中止后续任务。
        """

        _validate_tasks(tasks)
        self._logger.info("starting sequential execution of %d agents", len(tasks))
        results: List[AgentResult] = []
        context = ""
        for i, task in enumerate(tasks):
            effective_input = task.input
            if context and i > 0:
                effective_input = f"Previous context:\n{context}\n\nCurrent task:\n{task.input}"
            try:
                result = self.invoke(task.agent, effective_input, cancel_checker=cancel_checker)
            except Exception as e:
                result = AgentResult.failed(task.agent, task.input, str(e))
            results.append(result)
            if result.success:
                context += f"\n[{task.agent}]: {result.output}\n"
        return results

    def execute_orchestrated(
        self,
        task: OrchestratedTask,
        *,
        cancel_checker: Optional[Callable[[], bool]] = None,
    ) -> OrchestratedResult:
        """
        按 mode 执行编排任务（同一输入交给 task.agents 中的每个 agent）。

        异常：
        - ValueError：未知 mode
        """

        tasks = [AgentTask(agent=name, input=task.input) for name in task.agents]
        if task.mode == OrchestrationMode.PARALLEL.value:
            results = self.invoke_parallel(tasks, cancel_checker=cancel_checker)
        elif task.mode == OrchestrationMode.SEQUENTIAL.value:
            results = self.invoke_sequential(tasks, cancel_checker=cancel_checker)
        else:
            raise ValueError(f"unknown orchestration mode: {task.mode}")
        return OrchestratedResult(task=task, mode=task.mode, results=results)

    def close(self) -> None:
        """清空注册表（进程退出前调用）。"""

        with self._lock.write_locked():
            self._agents.clear()


def _validate_tasks(tasks: object) -> None:
    """确保 tasks 是 AgentTask 序列。"""

    if isinstance(tasks, (str, bytes)) or not isinstance(tasks, Sequence):
        raise ValueError("tasks must be a sequence of AgentTask")
    for t in tasks:
        if not isinstance(t, AgentTask):
            raise ValueError(f"invalid task: expected AgentTask, got {type(t).__name__}")
