"""BatchWorker -- 投递管道编排核心

单周期状态机: IDLE -> READING -> RESOLVING -> WRITING -> ACKNOWLEDGING -> IDLE，
收到关闭信号后进入 DRAINING（不再读取新批次，等待在途批次完成后释放连接）。

确认规则:
- 成功写入至少一个 sink，或已显式写入死信的消息 -> 确认
- 既未写入也未进入死信的消息（批次中途异常）-> 不确认，由缓冲区重投（唯一的重试机制）
- 整批异常（sink 不可达）-> 本批次不确认任何消息，固定退避后重新读取
"""

import asyncio
import os
from collections.abc import Mapping, Sequence
from typing import Protocol

import structlog
from pydantic import BaseModel
from ulid import ULID

from .buffer.protocols import DeadLetterSink, IntakeBuffer
from .exceptions import ConsumerGroupNotFoundError, DeadLetterError, RoutingConfigError
from .logging_config import bind_worker_context, unbind_worker_context
from .models.dead_letter import DeadLetterEntry, OriginalMessage
from .models.enums import Destination, FailureReason, WorkerState, validate_transition
from .models.event import LogEvent
from .models.results import BufferMessage, PartialResult, RoutedEvent
from .routing.rules import RoutingEngine
from .sinks.protocols import Sink

log = structlog.get_logger()


class Closeable(Protocol):
    async def close(self) -> None: ...


class BatchOutcome(BaseModel):
    """单周期处理结果"""

    read: int = 0
    written: int = 0
    dead_lettered: int = 0
    acked: int = 0
    left_pending: int = 0


def new_consumer_id() -> str:
    """生成 consumer ID：worker-<pid>-<随机后缀>"""
    return f"worker-{os.getpid()}-{str(ULID())[-6:].lower()}"


class BatchWorker:
    """批处理 Worker

    每个进程一个 Worker 循环；水平扩展通过多进程共享同一 consumer group 实现。
    周期严格串行：上一周期的写入与确认完成后才发起下一次 read_batch。
    """

    def __init__(
        self,
        buffer: IntakeBuffer,
        dead_letter: DeadLetterSink,
        routing: RoutingEngine,
        sinks: Mapping[Destination, Sink],
        group: str,
        consumer_id: str | None = None,
        batch_size: int = 200,
        block_s: float = 2.0,
        backoff_s: float = 1.0,
        max_deliveries: int = 5,
        docstore_failures_to_dlq: bool = True,
        stream_name: str = "",
        resources: Sequence[Closeable] = (),
    ) -> None:
        """
        Args:
            buffer: Intake Buffer
            dead_letter: 死信 sink
            routing: 路由引擎
            sinks: 目的地 -> sink
            group: consumer group 名称
            consumer_id: consumer 标识，None 时自动生成
            batch_size: 每次 read_batch 的最大条数
            block_s: read_batch 阻塞超时
            backoff_s: 整批失败后的固定退避
            max_deliveries: 超过此投递次数的消息进入死信，0 表示不限
            docstore_failures_to_dlq: 文档存储逐项失败是否进入死信
            stream_name: 源 stream 名称（写入死信条目）
            resources: 关闭时一并释放的连接（如 BufferGroup）
        """
        self._buffer = buffer
        self._dead_letter = dead_letter
        self._routing = routing
        self._sinks = dict(sinks)
        self._group = group
        self._consumer_id = consumer_id or new_consumer_id()
        self._batch_size = batch_size
        self._block_s = block_s
        self._backoff_s = backoff_s
        self._max_deliveries = max_deliveries
        self._docstore_failures_to_dlq = docstore_failures_to_dlq
        self._stream_name = stream_name
        self._resources = list(resources)

        self._state = WorkerState.IDLE
        self._shutdown = asyncio.Event()

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def consumer_id(self) -> str:
        return self._consumer_id

    def _transition(self, to_state: WorkerState) -> None:
        if not validate_transition(self._state, to_state):
            raise RuntimeError(f"Invalid worker transition: {self._state} -> {to_state}")
        self._state = to_state

    def request_shutdown(self) -> None:
        """协作式关闭：在周期之间检查，不打断在途批次"""
        if not self._shutdown.is_set():
            log.info("worker_shutdown_requested", consumer_id=self._consumer_id)
        self._shutdown.set()

    def validate(self) -> None:
        """启动期校验：路由引用完整 + 每个目的地都有 sink

        Raises:
            RoutingConfigError: 配置错误，进程应拒绝启动
        """
        self._routing.validate()
        errors = []
        for profile in self._routing.registry.list_all():
            for destination in profile.destinations:
                if destination not in self._sinks:
                    errors.append(
                        f"Profile '{profile.name}' targets '{destination}' but no sink is configured"
                    )
        if errors:
            log.error("sink_config_invalid", errors=errors)
            raise RoutingConfigError(errors)

    async def run(self) -> None:
        """主循环，直到 request_shutdown()

        启动校验失败时同样释放 sink 与外部资源后再抛出 RoutingConfigError。
        consumer group 的创建放在循环内，失败时与整批失败一样退避重试。
        """
        bind_worker_context(self._consumer_id, self._stream_name, self._group)
        try:
            self.validate()
            for sink in self._sinks.values():
                await sink.open()
            log.info(
                "worker_started",
                batch_size=self._batch_size,
                block_s=self._block_s,
                sinks=sorted(d.value for d in self._sinks),
            )

            group_ready = False
            while not self._shutdown.is_set():
                try:
                    if not group_ready:
                        await self._buffer.ensure_group(self._group)
                        group_ready = True
                    await self.process_batch()
                except ConsumerGroupNotFoundError:
                    log.warning("consumer_group_missing_recreating", group=self._group)
                    group_ready = False
                except Exception as e:
                    # 整批失败：不确认任何消息，固定退避后重新读取
                    log.error(
                        "batch_aborted",
                        error=str(e),
                        error_type=type(e).__name__,
                        backoff_s=self._backoff_s,
                    )
                    await self._backoff()
        finally:
            self._transition(WorkerState.DRAINING)
            await self._release()
            self._transition(WorkerState.STOPPED)
            log.info("worker_stopped", consumer_id=self._consumer_id)
            unbind_worker_context()

    async def _backoff(self) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=self._backoff_s)
        except TimeoutError:
            pass

    async def _release(self) -> None:
        for sink in self._sinks.values():
            try:
                await sink.close()
            except Exception as e:
                log.warning("sink_close_failed", destination=str(sink.destination), error=str(e))
        for resource in self._resources:
            try:
                await resource.close()
            except Exception as e:
                log.warning("resource_close_failed", error=str(e))

    async def process_batch(self) -> BatchOutcome:
        """执行一个完整周期

        Raises:
            Exception: 整批失败（已读取的消息全部保持未确认）
        """
        try:
            return await self._process_batch()
        finally:
            # 异常路径直接回到 IDLE
            self._state = WorkerState.IDLE

    async def _process_batch(self) -> BatchOutcome:
        self._transition(WorkerState.READING)
        messages = await self._buffer.read_batch(
            self._group,
            self._consumer_id,
            self._batch_size,
            self._block_s,
        )
        if not messages:
            self._transition(WorkerState.IDLE)
            return BatchOutcome()

        outcome = BatchOutcome(read=len(messages))
        log.info("batch_read", count=len(messages))

        # Resolving
        self._transition(WorkerState.RESOLVING)
        pending_writes: dict[Destination, list[tuple[BufferMessage, RoutedEvent]]] = {}
        for message in messages:
            routed = await self._resolve(message, outcome)
            if routed is None:
                continue
            for destination in sorted(routed.profile.destinations):
                pending_writes.setdefault(destination, []).append((message, routed))

        # Writing
        to_ack: list[str] = []
        if pending_writes:
            self._transition(WorkerState.WRITING)
            to_ack = await self._write(pending_writes, outcome)

        # Acknowledging
        self._transition(WorkerState.ACKNOWLEDGING)
        if to_ack:
            outcome.acked += await self._buffer.ack_many(self._group, to_ack)
        outcome.left_pending = outcome.read - outcome.acked
        self._transition(WorkerState.IDLE)

        log.info(
            "batch_processed",
            read=outcome.read,
            written=outcome.written,
            dead_lettered=outcome.dead_lettered,
            acked=outcome.acked,
            left_pending=outcome.left_pending,
        )
        return outcome

    async def _resolve(
        self,
        message: BufferMessage,
        outcome: BatchOutcome,
    ) -> RoutedEvent | None:
        """反序列化 + 解析 profile；无法处理的消息立即死信并确认"""
        if self._max_deliveries and message.delivery_count > self._max_deliveries:
            await self._dead_letter_and_ack(
                message,
                FailureReason.MAX_DELIVERIES_EXCEEDED,
                f"delivered {message.delivery_count} times (max {self._max_deliveries})",
                outcome,
            )
            return None

        try:
            event = LogEvent.model_validate_json(message.payload)
        except ValueError as e:
            log.warning("message_parse_failed", message_id=message.message_id, error=str(e))
            await self._dead_letter_and_ack(message, FailureReason.PARSE_ERROR, str(e), outcome)
            return None

        profile = self._routing.resolve(event)
        return RoutedEvent(event=event, profile=profile)

    async def _dead_letter_and_ack(
        self,
        message: BufferMessage,
        reason: FailureReason,
        error: str,
        outcome: BatchOutcome,
    ) -> None:
        if not await self._send_to_dead_letter(message, reason, error):
            return
        outcome.dead_lettered += 1
        if await self._buffer.ack(self._group, message.message_id):
            outcome.acked += 1

    async def _send_to_dead_letter(
        self,
        message: BufferMessage,
        reason: FailureReason,
        error: str,
    ) -> bool:
        """写入死信；失败时返回 False，消息保持未确认等待重投"""
        entry = DeadLetterEntry(
            original_message=OriginalMessage(id=message.message_id, data=message.payload),
            failure_reason=reason,
            error=error,
            source_stream=self._stream_name,
            delivery_count=message.delivery_count,
        )
        try:
            await self._dead_letter.write(entry)
        except DeadLetterError as e:
            log.error(
                "dead_letter_unavailable_leaving_pending",
                message_id=message.message_id,
                failure_reason=reason.value,
                error=str(e),
            )
            return False
        return True

    async def _write(
        self,
        pending_writes: dict[Destination, list[tuple[BufferMessage, RoutedEvent]]],
        outcome: BatchOutcome,
    ) -> list[str]:
        """每个目的地一次批量调用（并发），返回需要确认的 message_id

        Raises:
            Exception: 任一 sink 整体失败，本批次中止
        """
        destinations = list(pending_writes)
        results = await asyncio.gather(
            *(
                self._sinks[d].write_batch([routed for _, routed in pending_writes[d]])
                for d in destinations
            ),
            return_exceptions=True,
        )
        # 所有 sink 调用均已结束后再判断整体失败
        for destination, result in zip(destinations, results):
            if isinstance(result, BaseException):
                log.error(
                    "sink_batch_failed",
                    destination=destination.value,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                raise result

        messages: dict[str, BufferMessage] = {}
        written: set[str] = set()
        errors: dict[str, list[str]] = {}
        for destination, result in zip(destinations, results):
            failed = self._failed_items(result)
            for position, (message, routed) in enumerate(pending_writes[destination]):
                messages[message.message_id] = message
                error = failed.get(position)
                if error is None:
                    written.add(message.message_id)
                elif (
                    destination is Destination.DOCUMENT_STORE
                    and not self._docstore_failures_to_dlq
                ):
                    # 仅记录，不进入死信
                    log.error(
                        "document_store_write_failed_not_escalated",
                        message_id=message.message_id,
                        log_id=routed.event.id,
                        collection=routed.profile.collection_name(),
                        error=error,
                    )
                else:
                    errors.setdefault(message.message_id, []).append(
                        f"{destination.value}: {error}"
                    )

        to_ack: list[str] = []
        for message_id, message in messages.items():
            if message_id in errors:
                if await self._send_to_dead_letter(
                    message,
                    FailureReason.SINK_WRITE_ERROR,
                    "; ".join(errors[message_id]),
                ):
                    outcome.dead_lettered += 1
                    to_ack.append(message_id)
                if message_id in written:
                    outcome.written += 1
                continue
            if message_id in written:
                outcome.written += 1
            to_ack.append(message_id)
        return to_ack

    @staticmethod
    def _failed_items(result: PartialResult) -> dict[int, str]:
        return {failure.index: failure.error for failure in result.failures}

    async def stats(self) -> dict[str, int]:
        """只读计数器：缓冲区长度 / pending 数 / 死信长度"""
        return {
            "buffer_length": await self._buffer.length(),
            "pending": await self._buffer.pending_count(self._group),
            "dead_letter_length": await self._dead_letter.length(),
        }
