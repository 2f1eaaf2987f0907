"""
换行分隔的消息传输（stdio）。

约束：
- 每行一条 JSON 消息；单行长度上限为 `max_message_bytes`（默认 10 MiB）。
- 超长行会被整行丢弃（读到下一个换行为止），以 `OVERSIZED` 哨兵返回，会话继续。
- 写出时整行 + 换行在同一把锁内完成并 flush。

说明：
- reader/writer 既可以是二进制流（`sys.stdin.buffer` / `io.BytesIO`），也可以是文本流
  （`io.StringIO`）；长度上限按流的单位计算（二进制为字节，文本为字符）。
"""

from __future__ import annotations

import io
import json
import sys
import threading
from typing import IO, Any, Union

DEFAULT_MAX_MESSAGE_BYTES = 10 * 1024 * 1024


class _Oversized:
    """超长行哨兵。"""

    def __repr__(self) -> str:
        """调试表示。"""

        return "OVERSIZED"


OVERSIZED = _Oversized()

ReadResult = Union[str, _Oversized, None]


def _to_text(chunk: Union[str, bytes]) -> str:
    """把读到的行统一为 str（UTF-8，非法字节替换）。"""

    if isinstance(chunk, bytes):
        return chunk.decode("utf-8", errors="replace")
    return chunk


def _ends_with_newline(chunk: Union[str, bytes]) -> bool:
    """判断行是否以换行结束。"""

    return chunk.endswith(b"\n") if isinstance(chunk, bytes) else chunk.endswith("\n")


class LineTransport:
    """
    有界行读取 + 加锁行写出。

    参数：
    - reader：输入流（需支持 `readline(limit)`）
    - writer：输出流
    - max_message_bytes：单行上限
    """

    def __init__(self, reader: IO[Any], writer: IO[Any], *, max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES) -> None:
        """创建传输层。"""

        if max_message_bytes < 1:
            raise ValueError("max_message_bytes 必须 >= 1")
        self._reader = reader
        self._writer = writer
        self._max = int(max_message_bytes)
        self._write_lock = threading.Lock()
        self._text_writer = isinstance(writer, io.TextIOBase)

    @classmethod
    def stdio(cls, *, max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES) -> "LineTransport":
        """基于进程 stdin/stdout 的二进制缓冲创建传输层（UTF-8）。"""

        return cls(sys.stdin.buffer, sys.stdout.buffer, max_message_bytes=max_message_bytes)

    def read_message(self) -> ReadResult:
        """
        读取一行消息。

        返回：
        - str：去掉行尾换行（含 `\\r`）的消息文本
        - OVERSIZED：该行超过上限（已被整行丢弃）
        - None：EOF
        """

        chunk = self._reader.readline(self._max + 1)
        if not chunk:
            return None
        if _ends_with_newline(chunk):
            return _to_text(chunk).rstrip("\r\n")
        if len(chunk) <= self._max:
            # 最后一行没有换行
            return _to_text(chunk).rstrip("\r")
        self._drain_line()
        return OVERSIZED

    def _drain_line(self) -> None:
        """丢弃当前行剩余部分（直到换行或 EOF）。"""

        while True:
            rest = self._reader.readline(self._max + 1)
            if not rest or _ends_with_newline(rest):
                return

    def write_message(self, message: Any) -> None:
        """
        写出一条 JSON 消息（单行）并 flush。

        异常：
        - OSError / ValueError：输出流不可写（对进程是致命错误，由调用方决定退出）
        """

        line = json.dumps(message, ensure_ascii=False, separators=(",", ":")) + "\n"
        with self._write_lock:
            if self._text_writer:
                self._writer.write(line)
            else:
                self._writer.write(line.encode("utf-8"))
            self._writer.flush()
