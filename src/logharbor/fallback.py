"""FallbackLogger -- Intake Buffer 不可达时的本地兜底日志

仅由入站侧使用（Worker 不使用）。
布局: <log_dir>/<YYYY-MM-DD>/logs-<时间戳>.jsonl，每行一个 JSON 记录。
当前文件超过大小阈值或日期变化时轮转；轮转后在后台清理超过保留期的日期目录。
这是最后一级降级：write() 从不抛出异常，写入失败时以最高级别记录事件本身（接受数据丢失）。
"""

import asyncio
import json
import shutil
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import structlog

from .models.event import LogEvent

log = structlog.get_logger()

DATE_DIR_FORMAT = "%Y-%m-%d"


class FallbackLogger:
    """本地 JSONL 兜底日志（按日期分目录、按大小轮转、按保留期清理）"""

    def __init__(
        self,
        log_dir: str | Path,
        max_file_bytes: int = 10 * 1024 * 1024,
        retention_days: int = 7,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            log_dir: 兜底日志根目录
            max_file_bytes: 单文件大小阈值，达到后轮转
            retention_days: 日期目录保留天数
            clock: 当前时间来源（测试用）
        """
        self._log_dir = Path(log_dir)
        self._max_file_bytes = max_file_bytes
        self._retention_days = retention_days
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._current_file: Path | None = None
        self._current_dir: Path | None = None
        self._current_size = 0
        self._cleanup_task: asyncio.Task | None = None

    @property
    def current_file(self) -> Path | None:
        return self._current_file

    async def write(self, event: LogEvent | dict[str, Any]) -> bool:
        """追加一条记录

        Returns:
            True 写入成功；False 写入失败（已记录 critical 日志）
        """
        try:
            if isinstance(event, LogEvent):
                line = event.to_json()
            else:
                line = json.dumps(event, ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            log.critical("fallback_serialize_failed", error=str(e), record=repr(event))
            return False

        try:
            rotated = await asyncio.to_thread(self._write_line, line + "\n")
        except Exception as e:
            # 最后一级：只能记录错误与事件本身
            log.critical(
                "fallback_write_failed",
                error=str(e),
                error_type=type(e).__name__,
                record=line,
            )
            return False

        if rotated:
            self._schedule_cleanup()
        return True

    def _write_line(self, line: str) -> bool:
        """写入一行，返回是否发生了轮转"""
        data = line.encode("utf-8")
        with self._lock:
            now = self._clock()
            date_dir = self._log_dir / now.strftime(DATE_DIR_FORMAT)
            rotated = False
            if (
                self._current_file is None
                or self._current_dir != date_dir
                or self._current_size >= self._max_file_bytes
            ):
                self._rotate(date_dir, now)
                rotated = True

            with open(self._current_file, "ab") as f:
                f.write(data)
                f.flush()
            self._current_size += len(data)
            return rotated

    def _rotate(self, date_dir: Path, now: datetime) -> None:
        date_dir.mkdir(parents=True, exist_ok=True)
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S") + f"-{now.microsecond:06d}"
        candidate = date_dir / f"logs-{stamp}.jsonl"
        suffix = 1
        # 同一微秒内多次轮转时追加序号，保证文件名唯一
        while candidate.exists():
            candidate = date_dir / f"logs-{stamp}-{suffix}.jsonl"
            suffix += 1
        self._current_file = candidate
        self._current_dir = date_dir
        self._current_size = 0
        log.info("fallback_rotated", file=str(candidate))

    def _schedule_cleanup(self) -> None:
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup())

    async def _cleanup(self) -> None:
        try:
            await asyncio.to_thread(self.cleanup_old_logs)
        except Exception as e:
            # 清理失败不影响写入
            log.debug("fallback_cleanup_failed", error=str(e))

    def cleanup_old_logs(self) -> list[str]:
        """删除超过保留期的日期目录

        Returns:
            已删除的目录名列表
        """
        if not self._log_dir.exists():
            return []
        cutoff = (self._clock() - timedelta(days=self._retention_days)).date()
        removed = []
        for entry in sorted(self._log_dir.iterdir()):
            if not entry.is_dir():
                continue
            try:
                dir_date = datetime.strptime(entry.name, DATE_DIR_FORMAT).date()
            except ValueError:
                continue
            if dir_date < cutoff:
                shutil.rmtree(entry, ignore_errors=True)
                removed.append(entry.name)
                log.info("fallback_logs_cleaned", directory=entry.name)
        return removed

    async def aclose(self) -> None:
        """等待后台清理结束"""
        if self._cleanup_task is not None:
            await asyncio.gather(self._cleanup_task, return_exceptions=True)
            self._cleanup_task = None
