"""
WorkspaceSandbox：workspace 受限的文件系统 / 检索 / shell 原语。

设计目标：
- 所有路径都经过唯一的收敛点 `resolve()`：相对路径拼接到 root，规范化（含 `..` 与 symlink），
  再检查结果是否仍位于 root 之内；越界一律抛 `PathEscapeError`。
- 原语之间不共享可变状态；可被多个 agent loop 并发调用。

说明：
- `read_file` 在读取前检查大小上限，不会部分读取超大文件。
- `write_file` 新建文件权限为 0600，父目录自动创建（0755）。
- `glob_files` / `grep_files` / `list_directory` 返回 workspace 相对路径（POSIX 风格）。
- `run_shell` 以 `sh -c` 执行，cwd 固定为 root；非零退出码属于数据而不是错误。
"""

from __future__ import annotations

import fnmatch
import glob
import logging
import os
import re
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from local_agents.core.errors import FileTooLargeError, InvalidPatternError, PathEscapeError, UserError
from local_agents.core.executor import CommandResult, Executor

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_BYTES = 10 * 1024 * 1024
_BINARY_SNIFF_BYTES = 1024
_GLOB_MAGIC = re.compile(r"[*?[]")


class GrepMatch(BaseModel):
    """一次正则命中：workspace 相对路径 + 1-based 行号 + 去除首尾空白后的行内容。"""

    model_config = ConfigDict(frozen=True)

    file: str
    line: int
    content: str


class FileInfo(BaseModel):
    """目录项信息（`list_directory` 返回）。"""

    model_config = ConfigDict(frozen=True)

    name: str
    is_dir: bool
    size: int


class WorkspaceSandbox:
    """
    绑定到单个 workspace root 的沙箱。

    参数：
    - root：workspace 根目录（必须存在且为目录；内部保存其规范化绝对路径）
    - max_file_bytes：`read_file` 允许的最大文件字节数（默认 10 MiB）
    - executor：子进程执行器（默认新建 `Executor()`）
    - shell_timeout_ms：`run_shell` / `run_command` 的超时（None 表示不限制）
    """

    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        executor: Optional[Executor] = None,
        shell_timeout_ms: Optional[int] = None,
    ) -> None:
        """创建沙箱并校验 root。"""

        resolved = Path(root).expanduser().resolve()
        if not resolved.is_dir():
            raise UserError(
                f"workspace is not a directory: {resolved}",
                code="WORKSPACE_INVALID",
                details={"workspace": str(resolved)},
            )
        if max_file_bytes < 1:
            raise ValueError("max_file_bytes 必须 >= 1")
        self._root = resolved
        self._max_file_bytes = int(max_file_bytes)
        self._executor = executor or Executor()
        self._shell_timeout_ms = shell_timeout_ms

    @property
    def root(self) -> Path:
        """workspace 根目录（规范化绝对路径）。"""

        return self._root

    @property
    def max_file_bytes(self) -> int:
        """`read_file` 的大小上限。"""

        return self._max_file_bytes

    def resolve(self, path: str | os.PathLike[str]) -> Path:
        """
        把调用方路径收敛为 root 内的绝对路径。

        参数：
        - path：相对路径（相对 root）或绝对路径；空串表示 root 本身。`~` 不做展开，按普通路径段处理

        返回：
        - 规范化后的绝对路径（symlink 已解析）

        异常：
        - PathEscapeError：解析结果不在 root 之内
        """

        raw = os.fspath(path)
        candidate = Path(raw) if raw else self._root
        if not candidate.is_absolute():
            candidate = self._root / candidate
        resolved = candidate.resolve()
        if resolved != self._root and not resolved.is_relative_to(self._root):
            raise PathEscapeError(raw)
        return resolved

    def _prefix_inside_root(self, pattern: str) -> bool:
        """判断 glob 模式中第一个通配段之前的目录前缀（相对模式拼接到 root）是否位于 root 之内。"""

        prefix: List[str] = []
        for part in Path(pattern).parts:
            if _GLOB_MAGIC.search(part):
                break
            prefix.append(part)
        try:
            resolved = (self._root / Path(*prefix)).resolve()
        except (OSError, RuntimeError):
            return False
        return resolved == self._root or resolved.is_relative_to(self._root)

    def _relative(self, path: Path) -> str:
        """返回 `path` 相对 root 的 POSIX 路径（root 本身返回 `.`）。"""

        return Path(os.path.relpath(path, self._root)).as_posix()

    def read_file(self, path: str) -> str:
        """
        读取 UTF-8 文本文件全文（非法字节替换为 U+FFFD）。

        异常：
        - PathEscapeError：路径越界
        - FileNotFoundError：文件不存在
        - IsADirectoryError：目标是目录
        - FileTooLargeError：文件超过 `max_file_bytes`（不做部分读取）
        """

        target = self.resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"file not found: {path}")
        if target.is_dir():
            raise IsADirectoryError(f"path is a directory: {path}")
        size = target.stat().st_size
        if size > self._max_file_bytes:
            raise FileTooLargeError(size, self._max_file_bytes)
        return target.read_bytes().decode("utf-8", errors="replace")

    def write_file(self, path: str, content: str) -> int:
        """
        写入（整体覆盖）文本文件；必要时创建父目录。

        返回：
        - 写入的字节数（UTF-8）

        说明：
        - 新建文件权限为 0600；已存在文件保持原权限。
        """

        target = self.resolve(path)
        if target == self._root:
            raise IsADirectoryError(f"path is a directory: {path}")
        target.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        data = content.encode("utf-8")
        fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return len(data)

    def glob_files(self, pattern: str) -> List[str]:
        """
        按 glob 模式匹配文件（支持 `**` 递归）。

        说明：
        - 相对模式拼接到 root；绝对模式原样使用。
        - 模式的非通配前缀若不在 root 之内，直接返回空列表（不遍历）。
        - 每个匹配都要解析 symlink 后仍位于 root 内，否则丢弃。
        - 返回排序后的 workspace 相对路径。
        """

        if not self._prefix_inside_root(pattern):
            return []
        if os.path.isabs(pattern):
            candidates = glob.glob(pattern, recursive=True)
        else:
            candidates = [os.path.join(self._root, m) for m in glob.glob(pattern, root_dir=self._root, recursive=True)]
        out: List[str] = []
        for match in candidates:
            try:
                resolved = Path(match).resolve()
            except OSError:
                continue
            if resolved != self._root and not resolved.is_relative_to(self._root):
                continue
            rel = self._relative(Path(os.path.normpath(match)))
            if rel.startswith(".."):
                rel = self._relative(resolved)
            out.append(rel)
        return sorted(set(out))

    def grep_files(
        self,
        pattern: str,
        file_pattern: Optional[str] = None,
        *,
        max_matches: Optional[int] = None,
    ) -> List[GrepMatch]:
        """
        在 workspace 内按正则搜索文本行。

        参数：
        - pattern：Python 正则表达式
        - file_pattern：可选的文件名 glob（只匹配 basename，例如 `*.py`）
        - max_matches：可选的命中数上限（达到后停止遍历）

        返回：
        - `GrepMatch` 列表（按路径与行号有序）

        说明：
        - 跳过隐藏目录（名字以 `.` 开头）与二进制文件；无法读取的文件静默跳过。
        - symlink 指向 root 之外的文件会被跳过。

        异常：
        - InvalidPatternError：正则无法编译
        """

        try:
            rx = re.compile(pattern)
        except re.error as e:
            raise InvalidPatternError(pattern, str(e)) from e

        matches: List[GrepMatch] = []
        for dirpath, dirnames, filenames in os.walk(self._root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for name in sorted(filenames):
                if file_pattern and not fnmatch.fnmatchcase(name, file_pattern):
                    continue
                file_path = Path(dirpath) / name
                for line_no, content in self._scan_file(file_path, rx):
                    matches.append(GrepMatch(file=self._relative(file_path), line=line_no, content=content))
                    if max_matches is not None and len(matches) >= max_matches:
                        return matches
        return matches

    def _scan_file(self, file_path: Path, rx: re.Pattern[str]) -> List[tuple[int, str]]:
        """逐行匹配单个文件；越界/二进制/不可读文件返回空列表。"""

        try:
            resolved = file_path.resolve()
            if not resolved.is_relative_to(self._root) or not resolved.is_file():
                return []
            with resolved.open("rb") as f:
                head = f.read(_BINARY_SNIFF_BYTES)
                if b"\x00" in head:
                    return []
                data = head + f.read()
        except OSError:
            logger.debug("grep skipped unreadable file: %s", file_path)
            return []

        hits: List[tuple[int, str]] = []
        for idx, line in enumerate(data.decode("utf-8", errors="replace").splitlines(), start=1):
            if rx.search(line):
                hits.append((idx, line.strip()))
        return hits

    def list_directory(self, path: str = ".") -> List[FileInfo]:
        """
        列出目录的直接子项（按名称排序）。

        异常：
        - PathEscapeError：路径越界
        - FileNotFoundError / NotADirectoryError：目标不存在或不是目录
        """

        target = self.resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"directory not found: {path}")
        if not target.is_dir():
            raise NotADirectoryError(f"not a directory: {path}")
        out: List[FileInfo] = []
        with os.scandir(target) as it:
            for entry in it:
                st = entry.stat(follow_symlinks=False)
                is_dir = entry.is_dir(follow_symlinks=False)
                out.append(FileInfo(name=entry.name, is_dir=is_dir, size=0 if is_dir else int(st.st_size)))
        return sorted(out, key=lambda fi: fi.name)

    def run_shell(self, command: str, *, cancel_checker: Optional[Callable[[], bool]] = None) -> CommandResult:
        """
        以 `sh -c <command>` 在 root 下执行命令。

        返回：
        - `CommandResult`（非零退出码、超时都作为数据返回）

        异常：
        - CommandStartError：进程无法启动
        """

        logger.debug("run_shell: %s", command)
        return self._executor.run_shell(
            command,
            cwd=self._root,
            timeout_ms=self._shell_timeout_ms,
            cancel_checker=cancel_checker,
        )

    def run_command(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cancel_checker: Optional[Callable[[], bool]] = None,
    ) -> CommandResult:
        """以 argv 形式（不经过 shell）在 root 下执行程序；语义同 `run_shell`。"""

        return self._executor.run_command(
            [command, *args],
            cwd=self._root,
            timeout_ms=self._shell_timeout_ms,
            cancel_checker=cancel_checker,
        )
