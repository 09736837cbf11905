"""Worker 测试 fixtures -- 可控的 sink 替身"""

from collections.abc import Sequence

import pytest
from logharbor.models import Destination, ItemFailure, PartialResult, RoutedEvent


class FakeSink:
    """记录写入批次；按事件 id 返回逐项失败，或整体抛出异常"""

    def __init__(self, destination: Destination) -> None:
        self.destination = destination
        self.fail_ids: set[str] = set()
        self.error: Exception | None = None
        self.batches: list[list[RoutedEvent]] = []
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def write_batch(self, routed: Sequence[RoutedEvent]) -> PartialResult:
        if self.error is not None:
            raise self.error
        self.batches.append(list(routed))
        return PartialResult(
            failures=[
                ItemFailure(index=i, error=f"{self.destination} rejected {item.event.id}")
                for i, item in enumerate(routed)
                if item.event.id in self.fail_ids
            ]
        )

    @property
    def written_ids(self) -> list[str]:
        return [
            item.event.id
            for batch in self.batches
            for item in batch
            if item.event.id not in self.fail_ids
        ]


@pytest.fixture
def search_sink() -> FakeSink:
    return FakeSink(Destination.SEARCH_INDEX)


@pytest.fixture
def document_sink() -> FakeSink:
    return FakeSink(Destination.DOCUMENT_STORE)
