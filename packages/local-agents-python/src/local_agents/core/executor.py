"""
Executor（子进程执行引擎）。

本模块为 sandbox 的 shell 原语提供底层能力：
- `Executor.run_command(...)`：执行 argv 命令，分别捕获 stdout/stderr
- 标准化 `CommandResult`：exit_code/timed_out/cancelled/truncated/duration_ms

约束：
- 非零退出码是“数据”而不是错误；只有进程无法启动才抛 `CommandStartError`。
- 超时或取消时终止整个进程组（SIGTERM → grace → SIGKILL），`exit_code` 置为 None。
- leader 退出后若后台子进程仍占用输出管道，超过剩余超时（无超时时为 1s）即 SIGKILL 整个进程组。
- stdout/stderr 各自只保留尾部若干字节，避免大输出导致内存膨胀。
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import IO, Callable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from local_agents.core.errors import CommandStartError

logger = logging.getLogger(__name__)

_DRAIN_GRACE_SEC = 1.0
_MIN_DRAIN_SEC = 0.05


class CommandResult(BaseModel):
    """
    命令执行结果（结构化）。

    字段说明：
    - command/args：实际执行的程序与参数
    - stdout/stderr：捕获到的输出（可能被截断，截断时带前缀标记）
    - exit_code：进程退出码；超时/被取消时为 None
    - timed_out：是否因超时被终止
    - cancelled：是否因 cancel_checker 被终止
    - truncated：stdout/stderr 任一发生截断即为 true
    - duration_ms：耗时（毫秒）
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    command: str
    args: List[str] = Field(default_factory=list)
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    timed_out: bool = False
    cancelled: bool = False
    truncated: bool = False
    duration_ms: int = Field(default=0, ge=0)

    @property
    def success(self) -> bool:
        """当且仅当进程正常退出且退出码为 0。"""

        return self.exit_code == 0


class _TailBuffer:
    """只保留尾部 `limit` 字节的缓冲区。"""

    def __init__(self, limit: int) -> None:
        """创建尾部缓冲；`limit` 必须 >= 0（0 表示丢弃一切，但标记 truncated）。"""

        if limit < 0:
            raise ValueError("limit 必须 >= 0")
        self._limit = limit
        self._data = bytearray()
        self.truncated = False

    def feed(self, chunk: bytes) -> None:
        """追加一段输出；超过上限时丢弃最旧的字节。"""

        if not chunk:
            return
        self._data.extend(chunk)
        overflow = len(self._data) - self._limit
        if overflow > 0:
            del self._data[:overflow]
            self.truncated = True

    def text(self) -> str:
        """以 UTF-8 解码当前内容（非法字节替换为 U+FFFD）。"""

        return bytes(self._data).decode("utf-8", errors="replace")


def _pump(stream: Optional[IO[bytes]], sink: _TailBuffer) -> None:
    """后台线程：持续读取子进程管道直到 EOF。"""

    if stream is None:
        return
    while True:
        try:
            chunk = stream.read(4096)
        except (OSError, ValueError):
            return
        if not chunk:
            return
        sink.feed(chunk)


class Executor:
    """
    子进程执行器。

    参数：
    - max_output_bytes：stdout/stderr 各自保留的最大字节数（尾部保留）
    - terminate_grace_ms：超时/取消后 SIGTERM→SIGKILL 的宽限时间（毫秒）
    - truncate_marker：截断提示（插入到被截断输出的最前部）
    """

    def __init__(
        self,
        *,
        max_output_bytes: int = 1024 * 1024,
        terminate_grace_ms: int = 200,
        truncate_marker: str = "...<truncated>\n",
    ) -> None:
        """创建执行器并配置输出截断与终止策略。"""

        if max_output_bytes < 0:
            raise ValueError("max_output_bytes 必须 >= 0")
        if terminate_grace_ms < 0:
            raise ValueError("terminate_grace_ms 必须 >= 0")
        self._max_output_bytes = max_output_bytes
        self._terminate_grace_ms = terminate_grace_ms
        self._truncate_marker = truncate_marker

    def run_command(
        self,
        argv: List[str],
        *,
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        timeout_ms: Optional[int] = None,
        cancel_checker: Optional[Callable[[], bool]] = None,
    ) -> CommandResult:
        """
        执行 argv 命令并捕获结果。

        参数：
        - argv：命令与参数（至少 1 项）
        - cwd：工作目录
        - env：追加/覆盖的环境变量（覆盖 os.environ 同名项）
        - timeout_ms：超时毫秒数；None 表示不限制
        - cancel_checker：返回 True 时尽快终止进程（异常时 fail-open）

        返回：
        - `CommandResult`

        异常：
        - ValueError：argv 为空或 timeout_ms < 1
        - CommandStartError：进程无法启动
        """

        if not argv:
            raise ValueError("argv 不能为空")
        if timeout_ms is not None and timeout_ms < 1:
            raise ValueError("timeout_ms 必须 >= 1")

        merged_env = dict(os.environ)
        if env:
            merged_env.update({str(k): str(v) for k, v in env.items()})

        popen_kwargs: dict = {
            "cwd": str(cwd),
            "env": merged_env,
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
        }
        # 让超时 kill 能覆盖 `sh -c` 派生的子进程：子进程成为新的进程组 leader。
        if os.name != "nt":
            popen_kwargs["start_new_session"] = True
        else:
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]

        start = time.monotonic()
        try:
            proc = subprocess.Popen(argv, **popen_kwargs)  # noqa: S603
        except OSError as e:
            raise CommandStartError(" ".join(argv), str(e)) from e

        out_buf = _TailBuffer(self._max_output_bytes)
        err_buf = _TailBuffer(self._max_output_bytes)
        readers = [
            threading.Thread(target=_pump, args=(proc.stdout, out_buf), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, err_buf), daemon=True),
        ]
        for t in readers:
            t.start()

        timed_out = False
        cancelled = False
        deadline = None if timeout_ms is None else start + timeout_ms / 1000.0
        try:
            while True:
                if cancel_checker is not None and _safe_check(cancel_checker):
                    cancelled = True
                    self._terminate_process(proc)
                    break
                wait_for = 0.05
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        timed_out = True
                        self._terminate_process(proc)
                        break
                    wait_for = min(wait_for, remaining)
                try:
                    proc.wait(timeout=wait_for)
                    break
                except subprocess.TimeoutExpired:
                    continue
        finally:
            drain_sec = _DRAIN_GRACE_SEC
            if deadline is not None and not (timed_out or cancelled):
                drain_sec = max(deadline - time.monotonic(), _MIN_DRAIN_SEC)
            self._drain_readers(proc, readers, drain_sec)

        duration_ms = int((time.monotonic() - start) * 1000)
        exit_code: Optional[int] = None if (timed_out or cancelled) else proc.returncode
        if timed_out:
            logger.warning("command timed out after %sms: %s", timeout_ms, argv[0])

        stdout_text = out_buf.text()
        stderr_text = err_buf.text()
        if out_buf.truncated and stdout_text:
            stdout_text = f"{self._truncate_marker}{stdout_text}"
        if err_buf.truncated and stderr_text:
            stderr_text = f"{self._truncate_marker}{stderr_text}"

        return CommandResult(
            command=argv[0],
            args=list(argv[1:]),
            stdout=stdout_text,
            stderr=stderr_text,
            exit_code=exit_code,
            timed_out=timed_out,
            cancelled=cancelled,
            truncated=out_buf.truncated or err_buf.truncated,
            duration_ms=duration_ms,
        )

    def run_shell(
        self,
        command: str,
        *,
        cwd: Path,
        shell: str = "sh",
        env: Optional[Mapping[str, str]] = None,
        timeout_ms: Optional[int] = None,
        cancel_checker: Optional[Callable[[], bool]] = None,
    ) -> CommandResult:
        """
        以 `<shell> -c <command>` 执行一条命令字符串。

        参数：
        - command：shell 命令文本
        - shell：shell 可执行文件（默认 `sh`）
        - cwd/env/timeout_ms/cancel_checker：同 `run_command`
        """

        return self.run_command(
            [shell, "-c", command],
            cwd=cwd,
            env=env,
            timeout_ms=timeout_ms,
            cancel_checker=cancel_checker,
        )

    def _drain_readers(self, proc: subprocess.Popen, readers: List[threading.Thread], drain_sec: float) -> None:
        """
        等待读线程读到 EOF 并关闭管道。

        说明：
        - `sleep 60 &` 一类后台子进程会继承管道并一直持有；leader 退出后读线程仍阻塞在 read。
        - 超过 `drain_sec` 仍未 EOF 时 SIGKILL 整个进程组，使管道写端全部关闭。
        - 读线程仍存活时不关闭对应 stream（关闭会在 buffered reader 的锁上阻塞）。
        """

        wait_until = time.monotonic() + drain_sec
        for t in readers:
            t.join(timeout=max(wait_until - time.monotonic(), 0.0))
        if any(t.is_alive() for t in readers) and os.name != "nt":
            logger.warning("background process kept output pipes open; killing process group %s", proc.pid)
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except OSError:
                pass
            for t in readers:
                t.join(timeout=1.0)
        for t, stream in zip(readers, (proc.stdout, proc.stderr)):
            if stream is None or t.is_alive():
                continue
            try:
                stream.close()
            except OSError:
                pass

    def _terminate_process(self, proc: subprocess.Popen) -> None:
        """
        终止子进程：SIGTERM → (grace) → SIGKILL。

        说明：
        - POSIX 下优先终止整个进程组（`start_new_session=True`）。
        - 进程可能已自行退出，相关异常一律忽略。
        """

        if os.name == "nt":
            _quiet(proc.terminate)
            try:
                proc.wait(timeout=self._terminate_grace_ms / 1000.0)
                return
            except subprocess.TimeoutExpired:
                _quiet(proc.kill)
                return

        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except OSError:
            _quiet(proc.terminate)
        try:
            proc.wait(timeout=self._terminate_grace_ms / 1000.0)
            return
        except subprocess.TimeoutExpired:
            pass
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            _quiet(proc.kill)
        try:
            proc.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            logger.warning("process %s did not exit after SIGKILL", proc.pid)


def _safe_check(checker: Callable[[], bool]) -> bool:
    """调用取消检测回调；异常时 fail-open 返回 False。"""

    try:
        return bool(checker())
    except Exception:
        return False


def _quiet(fn: Callable[[], None]) -> None:
    """调用 `fn` 并忽略 `OSError`（进程已退出等）。"""

    try:
        fn()
    except OSError:
        pass
