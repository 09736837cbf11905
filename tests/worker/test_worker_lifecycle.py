"""BatchWorker 主循环测试

测试内容：
1. run() 创建 consumer group、打开 sink、持续处理
2. request_shutdown() -> DRAINING -> 释放连接 -> STOPPED
3. 整批失败后固定退避重试；退避可被关闭信号打断
4. consumer group 丢失后重建失败同样退避重试
5. 启动校验失败时仍释放外部资源
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from logharbor.buffer import BufferGroup, SqliteStreamBuffer
from logharbor.exceptions import (
    BufferUnavailableError,
    ConsumerGroupNotFoundError,
    RoutingConfigError,
    SinkUnavailableError,
)
from logharbor.models import Destination, WorkerState
from logharbor.routing import ProfileRegistry, RoutingEngine
from logharbor.worker import BatchWorker

GROUP = "workers"


def _make_worker(buffer, dead_letter, search_sink, document_sink, **kwargs) -> BatchWorker:
    return BatchWorker(
        buffer=buffer,
        dead_letter=dead_letter,
        routing=RoutingEngine(ProfileRegistry()),
        sinks={
            Destination.SEARCH_INDEX: search_sink,
            Destination.DOCUMENT_STORE: document_sink,
        },
        group=GROUP,
        block_s=0.01,
        stream_name="logs:stream",
        **kwargs,
    )


async def _wait_for(predicate, timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        assert loop.time() < deadline, "condition not reached"
        await asyncio.sleep(0.01)


class TestWorkerRun:
    """主循环"""

    async def test_run_processes_until_shutdown(
        self, buffer_group: BufferGroup, search_sink, document_sink, make_event
    ):
        """启动后处理积压消息，关闭后进入 STOPPED 并释放连接"""
        resource = AsyncMock()
        worker = _make_worker(
            buffer_group.intake,
            buffer_group.dead_letter,
            search_sink,
            document_sink,
            resources=[resource],
        )
        events = [make_event(message=str(i)) for i in range(3)]
        for event in events:
            await buffer_group.intake.append(event)

        task = asyncio.create_task(worker.run())

        async def all_written() -> bool:
            return len(search_sink.written_ids) == 3

        await _wait_for(all_written)
        assert await buffer_group.intake.pending_count(GROUP) == 0

        worker.request_shutdown()
        await asyncio.wait_for(task, timeout=3)

        assert worker.state == WorkerState.STOPPED
        assert search_sink.opened is True
        assert search_sink.closed is True
        assert document_sink.closed is True
        resource.close.assert_awaited_once()

    async def test_messages_appended_while_running(
        self, buffer_group: BufferGroup, search_sink, document_sink, make_event
    ):
        """运行期间追加的消息同样被处理"""
        worker = _make_worker(
            buffer_group.intake, buffer_group.dead_letter, search_sink, document_sink
        )
        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.05)

        event = make_event()
        await buffer_group.intake.append(event)

        async def written() -> bool:
            return search_sink.written_ids == [event.id]

        await _wait_for(written)
        worker.request_shutdown()
        await asyncio.wait_for(task, timeout=3)

    async def test_stats(self, buffer_group: BufferGroup, search_sink, document_sink):
        """只读计数器"""
        await buffer_group.intake.ensure_group(GROUP)
        await buffer_group.intake.append("{broken")
        worker = _make_worker(
            buffer_group.intake, buffer_group.dead_letter, search_sink, document_sink
        )

        await worker.process_batch()
        stats = await worker.stats()

        assert stats == {"buffer_length": 1, "pending": 0, "dead_letter_length": 1}


class TestWorkerBackoff:
    """整批失败退避"""

    async def test_retries_after_backoff(
        self, buffer_group: BufferGroup, search_sink, document_sink, make_event
    ):
        """sink 恢复后同一消息在退避后被重新处理"""
        intake = SqliteStreamBuffer(buffer_group.conn, "logs:stream", claim_idle_s=0)
        worker = _make_worker(
            intake, buffer_group.dead_letter, search_sink, document_sink, backoff_s=0.01
        )
        event = make_event()
        await intake.append(event)
        search_sink.error = SinkUnavailableError("search-index", "down")

        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.05)
        search_sink.error = None

        async def written() -> bool:
            return search_sink.written_ids == [event.id]

        await _wait_for(written)
        worker.request_shutdown()
        await asyncio.wait_for(task, timeout=3)

        assert await intake.pending_count(GROUP) == 0
        assert await buffer_group.dead_letter.length() == 0

    async def test_shutdown_interrupts_backoff(
        self, buffer_group: BufferGroup, search_sink, document_sink, make_event
    ):
        """关闭信号打断长时间退避"""
        worker = _make_worker(
            buffer_group.intake,
            buffer_group.dead_letter,
            search_sink,
            document_sink,
            backoff_s=60,
        )
        await buffer_group.intake.append(make_event())
        search_sink.error = SinkUnavailableError("search-index", "down")

        task = asyncio.create_task(worker.run())

        async def pending() -> bool:
            return await buffer_group.intake.pending_count(GROUP) == 1

        await _wait_for(pending)
        await asyncio.sleep(0.02)
        worker.request_shutdown()
        await asyncio.wait_for(task, timeout=3)

        assert worker.state == WorkerState.STOPPED
        assert await buffer_group.intake.pending_count(GROUP) == 1

    async def test_group_recreate_failure_backs_off(self, search_sink, document_sink):
        """consumer group 丢失后重建时缓冲区不可达：退避重试，不退出主循环"""
        buffer = AsyncMock()
        buffer.ensure_group.side_effect = [
            None,
            BufferUnavailableError("logs:stream", OSError("disk gone")),
            None,
        ]
        reads = 0

        async def read_batch(*args, **kwargs):
            nonlocal reads
            reads += 1
            if reads == 1:
                raise ConsumerGroupNotFoundError("logs:stream", GROUP)
            await asyncio.sleep(0.01)
            return []

        buffer.read_batch.side_effect = read_batch
        worker = _make_worker(buffer, AsyncMock(), search_sink, document_sink, backoff_s=0.01)

        task = asyncio.create_task(worker.run())

        async def recovered() -> bool:
            return buffer.ensure_group.await_count == 3 and reads >= 2

        await _wait_for(recovered)
        assert task.done() is False

        worker.request_shutdown()
        await asyncio.wait_for(task, timeout=3)
        assert worker.state == WorkerState.STOPPED


class TestWorkerStartup:
    """启动校验"""

    async def test_invalid_config_releases_resources(
        self, buffer_group: BufferGroup, search_sink
    ):
        """缺少 sink 导致拒绝启动时，sink 与外部资源仍被关闭"""
        resource = AsyncMock()
        worker = BatchWorker(
            buffer=buffer_group.intake,
            dead_letter=buffer_group.dead_letter,
            routing=RoutingEngine(ProfileRegistry()),
            sinks={Destination.SEARCH_INDEX: search_sink},
            group=GROUP,
            resources=[resource],
        )

        with pytest.raises(RoutingConfigError):
            await worker.run()

        assert worker.state == WorkerState.STOPPED
        assert search_sink.opened is False
        assert search_sink.closed is True
        resource.close.assert_awaited_once()
