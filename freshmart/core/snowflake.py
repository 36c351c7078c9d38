"""
Snowflake ID 生成器模块

订单、支付、商品、用户等所有记录的主键都由这里生成。
ID 按时间递增，订单号（展示用）取 ID 的末 8 位。

ID 结构（64 位）：
- 41 位：时间戳（毫秒，从 2024-01-01 起算）
- 10 位：节点 ID（0-1023，每个服务实例 / worker 不同）
- 12 位：同一毫秒内的序列号（0-4095）
"""
from __future__ import annotations

import threading
import time

from freshmart.core.config import settings

_EPOCH_MS = 1704067200000  # 2024-01-01T00:00:00Z
_NODE_BITS = 10
_SEQ_BITS = 12
_SEQ_MASK = (1 << _SEQ_BITS) - 1
_MAX_BACKWARD_MS = 5000


class Snowflake:
    """线程安全的 64 位 ID 生成器"""

    def __init__(self, *, node_id: int) -> None:
        if not (0 <= node_id < (1 << _NODE_BITS)):
            raise ValueError("SNOWFLAKE_NODE_ID must be in [0, 1023]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    @classmethod
    def _wait_until(cls, target_ms: int) -> int:
        ts = cls._now_ms()
        while ts < target_ms:
            time.sleep(0.001)
            ts = cls._now_ms()
        return ts

    def next_id(self) -> int:
        """
        生成下一个 ID

        Raises:
            RuntimeError: 时钟回拨超过 5 秒时拒绝生成，防止 ID 重复
        """
        with self._lock:
            ts = self._now_ms()
            if ts < self._last_ts:
                drift = self._last_ts - ts
                if drift > _MAX_BACKWARD_MS:
                    raise RuntimeError(
                        f"Clock moved backwards by {drift}ms. "
                        "Refusing to generate IDs to prevent duplicates."
                    )
                ts = self._wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & _SEQ_MASK
                if self._seq == 0:
                    # 当前毫秒序列号用尽
                    ts = self._wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << (_NODE_BITS + _SEQ_BITS)) | (self._node_id << _SEQ_BITS) | self._seq


_GENERATOR: Snowflake | None = None


def generate_id() -> int:
    """生成唯一 ID（模型主键的 default_factory）"""
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR.next_id()


def short_id(value: int, length: int = 8) -> str:
    """
    生成展示用短编号

    示例：
        >>> short_id(1234567890123456789)
        '23456789'
    """
    return str(value)[-length:].upper()
