"""Sink Protocol 接口定义

两种能力变体共享同一写入契约：
write_batch(routed) -> PartialResult，failures 中的 index 指向输入序列位置。
整体不可用时抛出 SinkUnavailableError，调用方不得确认该批次的任何消息。
"""

from collections.abc import Sequence
from typing import Protocol

from ..models.enums import Destination
from ..models.results import PartialResult, RoutedEvent


class Sink(Protocol):
    """存储 sink 接口"""

    destination: Destination

    async def open(self) -> None:
        """建立后端连接"""
        ...

    async def close(self) -> None:
        """释放后端连接"""
        ...

    async def write_batch(self, routed: Sequence[RoutedEvent]) -> PartialResult:
        """批量写入，返回逐项失败"""
        ...
