from __future__ import annotations

import os
import shutil
import sys
import threading
import time
from pathlib import Path

import pytest

from local_agents.core.errors import CommandStartError
from local_agents.core.executor import Executor

pytestmark = pytest.mark.skipif(os.name == "nt", reason="executor tests rely on POSIX sh")


def _sleep_argv(seconds: int) -> list[str]:
    sleep_bin = shutil.which("sleep")
    if sleep_bin:
        return [sleep_bin, str(seconds)]
    # 兼容极端环境：退化为 Python sleep
    return [sys.executable, "-c", f"import time; time.sleep({seconds})"]


def test_run_command_captures_stdout_and_stderr_separately(tmp_path: Path) -> None:
    ex = Executor()
    result = ex.run_shell("echo out; echo err >&2", cwd=tmp_path, timeout_ms=5_000)

    assert result.success is True
    assert result.exit_code == 0
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert result.timed_out is False
    assert result.truncated is False
    assert result.command == "sh"
    assert result.args[0] == "-c"


def test_run_command_nonzero_exit_is_data(tmp_path: Path) -> None:
    result = Executor().run_shell("exit 7", cwd=tmp_path)
    assert result.exit_code == 7
    assert result.success is False
    assert result.timed_out is False


def test_run_command_timeout_kills_process_group(tmp_path: Path) -> None:
    ex = Executor(terminate_grace_ms=50)
    marker = tmp_path / "late.txt"
    started = time.monotonic()
    result = ex.run_shell(f"sleep 3; echo late > {marker}", cwd=tmp_path, timeout_ms=100)
    elapsed = time.monotonic() - started

    assert result.timed_out is True
    assert result.exit_code is None
    assert elapsed < 3.0
    time.sleep(0.2)
    assert not marker.exists()


def test_run_command_cancel_checker_stops_process(tmp_path: Path) -> None:
    cancel = threading.Event()
    threading.Timer(0.1, cancel.set).start()

    result = Executor().run_command(_sleep_argv(5), cwd=tmp_path, cancel_checker=cancel.is_set)
    assert result.cancelled is True
    assert result.exit_code is None
    assert result.duration_ms < 5_000


def test_run_command_cancel_checker_exception_fails_open(tmp_path: Path) -> None:
    def _boom() -> bool:
        raise RuntimeError("checker broke")

    result = Executor().run_shell("echo hi", cwd=tmp_path, cancel_checker=_boom)
    assert result.success is True
    assert result.cancelled is False


def test_run_command_output_is_tail_truncated(tmp_path: Path) -> None:
    ex = Executor(max_output_bytes=8, truncate_marker="[cut]")
    result = ex.run_shell("printf 'abcdefghijklmnop'", cwd=tmp_path)

    assert result.truncated is True
    assert result.stdout == "[cut]ijklmnop"


def test_run_command_env_overrides(tmp_path: Path) -> None:
    result = Executor().run_shell('printf "%s" "$LA_TEST_VAR"', cwd=tmp_path, env={"LA_TEST_VAR": "v1"})
    assert result.stdout == "v1"


def test_run_command_missing_binary_raises_start_error(tmp_path: Path) -> None:
    with pytest.raises(CommandStartError) as ei:
        Executor().run_command(["/definitely/not/a/binary"], cwd=tmp_path)
    assert ei.value.code == "COMMAND_START_FAILED"


def test_run_command_rejects_empty_argv_and_bad_timeout(tmp_path: Path) -> None:
    ex = Executor()
    with pytest.raises(ValueError):
        ex.run_command([], cwd=tmp_path)
    with pytest.raises(ValueError):
        ex.run_command(["true"], cwd=tmp_path, timeout_ms=0)


def test_run_command_background_child_holding_pipes_is_bounded_by_timeout(tmp_path: Path) -> None:
    started = time.monotonic()
    result = Executor().run_shell("sleep 6 & echo hi", cwd=tmp_path, timeout_ms=1_000)
    elapsed = time.monotonic() - started

    assert elapsed < 4.0
    assert result.stdout == "hi\n"
    assert result.exit_code == 0
    assert result.timed_out is False


def test_run_command_background_child_without_timeout_gets_drain_grace(tmp_path: Path) -> None:
    started = time.monotonic()
    result = Executor().run_shell("sleep 6 & echo hi", cwd=tmp_path)
    elapsed = time.monotonic() - started

    assert elapsed < 4.0
    assert result.stdout == "hi\n"
    assert result.exit_code == 0
