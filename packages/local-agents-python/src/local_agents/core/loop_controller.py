"""
LoopController：Agent Loop 的迭代计数 / wall time 预算 / 取消控制（internal）。

目标：
- 将“迭代上限、wall time、cancel_checker”等状态收敛到单一对象，Agent 内核只做状态迁移。
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class LoopController:
    """
    LoopController（internal）。

    字段：
    - max_iterations：最多允许的 Thinking 次数
    - max_wall_time_sec：wall time 预算（None 表示不限制）
    - cancel_checker：取消检测回调（返回 True 表示应尽快停止；异常时 fail-open）
    - started_monotonic：起始 monotonic 时间戳
    """

    max_iterations: int
    max_wall_time_sec: Optional[float] = None
    cancel_checker: Optional[Callable[[], bool]] = None
    started_monotonic: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        """初始化迭代计数。"""

        if self.max_iterations < 1:
            raise ValueError("max_iterations 必须 >= 1")
        self._iterations = 0

    @property
    def iterations(self) -> int:
        """已开始的迭代次数。"""

        return self._iterations

    def try_begin_iteration(self) -> bool:
        """
        尝试开始下一次迭代。

        返回：
        - True：预算充足，计数 +1
        - False：已达上限，计数不变
        """

        if self._iterations >= self.max_iterations:
            return False
        self._iterations += 1
        return True

    def is_cancelled(self) -> bool:
        """
        检查是否需要取消本次调用。

        约束：
        - 异常时 fail-open：返回 False。
        """

        if self.cancel_checker is None:
            return False
        try:
            return bool(self.cancel_checker())
        except Exception:
            return False

    def wall_time_exceeded(self) -> bool:
        """检查 wall time 预算是否耗尽（未配置则返回 False）。"""

        if self.max_wall_time_sec is None:
            return False
        return time.monotonic() - self.started_monotonic > float(self.max_wall_time_sec)
