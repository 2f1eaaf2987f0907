from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Dict, List

import pytest

from local_agents.core.agent import EmbeddedAgent
from local_agents.core.contracts import AgentSpec, AgentTask, OrchestratedTask
from local_agents.core.errors import AgentNotFoundError
from local_agents.core.runner import PARALLEL_TIMEOUT_ERROR, ReadWriteLock, Runner
from local_agents.llm.fake import FakeLLMClient
from local_agents.llm.protocol import ChatRequest, CompletionResponse
from local_agents.sandbox import WorkspaceSandbox
from local_agents.tools.protocol import ToolCall


def _last_user(request: ChatRequest) -> str:
    return [m.content for m in request.messages if m.role == "user"][-1]


def _make_runner(tmp_path: Path, llm: FakeLLMClient, names: List[str], **runner_kwargs) -> Runner:  # type: ignore[no-untyped-def]
    ws = tmp_path / "ws"
    ws.mkdir(parents=True, exist_ok=True)
    sandbox = WorkspaceSandbox(ws)
    runner = Runner(sandbox, **runner_kwargs)
    for name in names:
        spec = AgentSpec(name=name, description=f"{name} agent", instructions=f"You are {name}.", tools=["read"])
        runner.register(EmbeddedAgent(spec, sandbox, llm))
    return runner


def _prefixing_llm() -> FakeLLMClient:
    """每个 agent 输出 `<agent>:<input>`。"""

    return FakeLLMClient(lambda req: CompletionResponse(content=f"{req.agent}:{_last_user(req)}", done=True))


def test_register_list_and_lookup(tmp_path: Path) -> None:
    runner = _make_runner(tmp_path, _prefixing_llm(), ["b", "a"])

    assert runner.list_agents() == ["b", "a"]
    assert [i.name for i in runner.list_agent_info()] == ["b", "a"]
    assert runner.get_agent_info("a").description == "a agent"
    assert runner.get_agent("zzz") is None
    assert runner.workspace == (tmp_path / "ws").resolve()
    with pytest.raises(AgentNotFoundError):
        runner.get_agent_info("zzz")


def test_register_duplicate_name_fails(tmp_path: Path) -> None:
    runner = _make_runner(tmp_path, _prefixing_llm(), ["a"])
    spec = AgentSpec(name="a", instructions="dup")
    with pytest.raises(ValueError):
        runner.register(EmbeddedAgent(spec, runner.sandbox, _prefixing_llm()))


def test_invoke_unknown_agent_raises(tmp_path: Path) -> None:
    runner = _make_runner(tmp_path, _prefixing_llm(), ["a"])
    with pytest.raises(AgentNotFoundError) as ei:
        runner.invoke("ghost", "hi")
    assert str(ei.value) == "agent not found: ghost"


def test_invoke_parallel_preserves_input_order(tmp_path: Path) -> None:
    delays: Dict[str, float] = {"slow": 0.2, "mid": 0.1, "fast": 0.0}

    def _respond(req: ChatRequest) -> CompletionResponse:
        time.sleep(delays[str(req.agent)])
        return CompletionResponse(content=f"{req.agent} done", done=True)

    runner = _make_runner(tmp_path, FakeLLMClient(_respond), ["slow", "mid", "fast"])
    tasks = [AgentTask(agent=n, input="go") for n in ["slow", "mid", "fast"]]

    results = runner.invoke_parallel(tasks)

    assert [r.agent for r in results] == ["slow", "mid", "fast"]
    assert [r.output for r in results] == ["slow done", "mid done", "fast done"]
    assert all(r.success for r in results)


def test_invoke_parallel_runs_concurrently(tmp_path: Path) -> None:
    barrier = threading.Barrier(3, timeout=5)

    def _respond(req: ChatRequest) -> CompletionResponse:
        barrier.wait()
        return CompletionResponse(content="ok", done=True)

    runner = _make_runner(tmp_path, FakeLLMClient(_respond), ["a", "b", "c"])
    results = runner.invoke_parallel([AgentTask(agent=n, input="x") for n in ["a", "b", "c"]])
    assert [r.success for r in results] == [True, True, True]


def test_invoke_parallel_unknown_agent_only_fails_its_slot(tmp_path: Path) -> None:
    runner = _make_runner(tmp_path, _prefixing_llm(), ["a"])
    results = runner.invoke_parallel([AgentTask(agent="a", input="x"), AgentTask(agent="ghost", input="x")])

    assert results[0].success is True
    assert results[1].success is False
    assert results[1].agent == "ghost"
    assert results[1].error == "agent not found: ghost"


def test_invoke_parallel_empty_returns_empty(tmp_path: Path) -> None:
    runner = _make_runner(tmp_path, _prefixing_llm(), [])
    assert runner.invoke_parallel([]) == []


def test_invoke_parallel_rejects_bad_tasks(tmp_path: Path) -> None:
    runner = _make_runner(tmp_path, _prefixing_llm(), ["a"])
    with pytest.raises(ValueError):
        runner.invoke_parallel("a")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        runner.invoke_parallel([{"agent": "a", "input": "x"}])  # type: ignore[list-item]


def test_invoke_parallel_timeout_marks_unfinished_and_cancels(tmp_path: Path) -> None:
    release = threading.Event()
    slow_calls: List[int] = []

    def _respond(req: ChatRequest) -> CompletionResponse:
        if req.agent == "slow":
            slow_calls.append(1)
            release.wait(timeout=2)
            return CompletionResponse(tool_calls=[ToolCall(id="c", name="read", arguments={"path": "a"})])
        return CompletionResponse(content="quick", done=True)

    runner = _make_runner(tmp_path, FakeLLMClient(_respond), ["fast", "slow"])
    started = time.monotonic()
    results = runner.invoke_parallel(
        [AgentTask(agent="fast", input="x"), AgentTask(agent="slow", input="x")],
        timeout_sec=0.2,
    )
    elapsed = time.monotonic() - started
    release.set()

    assert elapsed < 2.0
    assert results[0].success is True
    assert results[0].output == "quick"
    assert results[1].success is False
    assert results[1].error == PARALLEL_TIMEOUT_ERROR

    # 被放弃的 slot 在下一次迭代边界观察到批次取消，不再调用 LLM
    time.sleep(0.3)
    assert len(slow_calls) == 1


def test_invoke_sequential_accumulates_context(tmp_path: Path) -> None:
    llm = _prefixing_llm()
    runner = _make_runner(tmp_path, llm, ["a", "b", "c"])

    results = runner.invoke_sequential([AgentTask(agent=n, input="task") for n in ["a", "b", "c"]])

    assert results[0].output == "a:task"
    assert results[1].input == "Previous context:\n\n[a]: a:task\n\n\nCurrent task:\ntask"
    assert results[2].input == (
        "Previous context:\n\n[a]: a:task\n\n[b]: " + results[1].output + "\n\n\nCurrent task:\ntask"
    )


def test_invoke_sequential_failure_does_not_abort_or_update_context(tmp_path: Path) -> None:
    runner = _make_runner(tmp_path, _prefixing_llm(), ["a", "c"])

    results = runner.invoke_sequential(
        [AgentTask(agent="ghost", input="t"), AgentTask(agent="a", input="t"), AgentTask(agent="c", input="t")]
    )

    assert results[0].success is False
    assert results[0].input == "t"
    assert results[1].input == "t"
    assert results[1].success is True
    assert results[2].input.startswith("Previous context:\n\n[a]: a:t\n")


def test_execute_orchestrated_modes(tmp_path: Path) -> None:
    runner = _make_runner(tmp_path, _prefixing_llm(), ["a", "b"])

    par = runner.execute_orchestrated(OrchestratedTask(name="t", agents=["a", "b"], input="q", mode="parallel"))
    assert par.mode == "parallel"
    assert [r.output for r in par.results] == ["a:q", "b:q"]
    assert par.all_successful() is True
    assert par.summary() == "[a] SUCCESS: a:q\n[b] SUCCESS: b:q\n"

    seq = runner.execute_orchestrated(OrchestratedTask(name="t", agents=["a", "b"], input="q", mode="sequential"))
    assert seq.results[1].input.startswith("Previous context:")

    with pytest.raises(ValueError) as ei:
        runner.execute_orchestrated(OrchestratedTask(name="t", agents=["a"], input="q", mode="round-robin"))
    assert "unknown orchestration mode" in str(ei.value)


def test_close_clears_registry(tmp_path: Path) -> None:
    runner = _make_runner(tmp_path, _prefixing_llm(), ["a"])
    runner.close()
    assert runner.list_agents() == []


def test_read_write_lock_allows_concurrent_readers() -> None:
    lock = ReadWriteLock()
    inside = threading.Barrier(2, timeout=2)

    def _reader() -> None:
        with lock.read_locked():
            inside.wait()

    threads = [threading.Thread(target=_reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=3)
    assert not any(t.is_alive() for t in threads)

    with lock.write_locked():
        pass
