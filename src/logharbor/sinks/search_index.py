"""SearchIndexSink -- Elasticsearch _bulk 接口封装

索引名由 profile 的 index_prefix 与当前日期计算（<prefix>-YYYY.MM.DD），
批次内每个不同的索引名发起一次 bulk 调用。
文档 _id 使用事件 id，重投时覆盖写入（幂等）。
"""

import json
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from ..exceptions import SinkUnavailableError
from ..models.enums import Destination
from ..models.results import ItemFailure, PartialResult, RoutedEvent
from .mapping import search_document

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
PING_TIMEOUT_S = 5


def _format_item_error(error: Any) -> str:
    """保留 sink 原生错误详情"""
    if isinstance(error, dict):
        return json.dumps(error, ensure_ascii=False)
    return str(error)


class SearchIndexSink:
    """Elasticsearch 搜索索引 sink"""

    destination = Destination.SEARCH_INDEX

    def __init__(
        self,
        base_url: str = "http://localhost:9200",
        default_index_alias: str = "logharbor_logs",
        api_key: str = "",
        username: str = "",
        password: str = "",
        timeout_s: float = 30,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Args:
            base_url: Elasticsearch 地址
            default_index_alias: profile 未配置 index_prefix 时的索引
            api_key: API key 认证（优先于 basic auth）
            username / password: basic auth
            timeout_s: 请求超时（秒）
            client: 外部注入的 httpx 客户端（测试用），注入时由调用方负责关闭
            clock: 当前时间来源，用于计算按日索引名
        """
        self._base_url = base_url.rstrip("/")
        self._default_index_alias = default_index_alias
        self._api_key = api_key
        self._username = username
        self._password = password
        self._timeout_s = timeout_s
        self._client = client
        self._owns_client = client is None
        self._clock = clock or (lambda: datetime.now(UTC))

    async def open(self) -> None:
        if self._client is not None:
            return
        headers = {}
        auth = None
        if self._api_key:
            headers["Authorization"] = f"ApiKey {self._api_key}"
        elif self._username and self._password:
            auth = httpx.BasicAuth(self._username, self._password)
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            auth=auth,
            timeout=self._timeout_s,
        )
        self._owns_client = True
        log.info("search_index_sink_opened", url=self._base_url)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            log.info("search_index_sink_closed", url=self._base_url)

    def index_name_for(self, routed: RoutedEvent) -> str:
        """计算事件的目标索引名"""
        today = self._clock().astimezone(UTC).date()
        return routed.profile.index_name(today, self._default_index_alias)

    async def write_batch(self, routed: Sequence[RoutedEvent]) -> PartialResult:
        """按索引名分组，每组一次 bulk 调用

        Raises:
            SinkUnavailableError: 连接失败、非 2xx 响应或响应无法解析
        """
        if not routed:
            return PartialResult()
        if self._client is None:
            await self.open()

        groups: dict[str, list[int]] = {}
        for position, item in enumerate(routed):
            groups.setdefault(self.index_name_for(item), []).append(position)

        failures: list[ItemFailure] = []
        for index_name, positions in groups.items():
            failures.extend(await self._bulk(index_name, positions, routed))
        return PartialResult(failures=failures)

    async def _bulk(
        self,
        index_name: str,
        positions: list[int],
        routed: Sequence[RoutedEvent],
    ) -> list[ItemFailure]:
        lines = []
        for position in positions:
            event = routed[position].event
            lines.append(json.dumps({"index": {"_index": index_name, "_id": event.id}}))
            lines.append(json.dumps(search_document(event), ensure_ascii=False))
        body = "\n".join(lines) + "\n"

        try:
            resp = await self._client.post(
                "/_bulk",
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/x-ndjson"},
            )
        except httpx.HTTPError as e:
            log.error(
                "search_bulk_request_failed",
                index=index_name,
                count=len(positions),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SinkUnavailableError(self.destination.value, e) from e

        if resp.status_code >= 300:
            log.error(
                "search_bulk_rejected",
                index=index_name,
                status_code=resp.status_code,
                body=resp.text[:500],
            )
            raise SinkUnavailableError(
                self.destination.value,
                f"bulk HTTP {resp.status_code}: {resp.text[:200]}",
            )

        try:
            result = resp.json()
            items = result.get("items", [])
        except (ValueError, AttributeError) as e:
            raise SinkUnavailableError(self.destination.value, e) from e

        if not result.get("errors"):
            log.debug("search_bulk_indexed", index=index_name, count=len(positions))
            return []

        if len(items) != len(positions):
            raise SinkUnavailableError(
                self.destination.value,
                f"bulk response has {len(items)} items for {len(positions)} actions",
            )

        failures = []
        for position, item in zip(positions, items):
            action = item.get("index") or next(iter(item.values()), {})
            error = action.get("error")
            if error is None and action.get("status", 200) < 300:
                continue
            failures.append(
                ItemFailure(
                    index=position,
                    error=_format_item_error(error or f"status {action.get('status')}"),
                )
            )

        log.warning(
            "search_bulk_partial_failure",
            index=index_name,
            count=len(positions),
            failed=len(failures),
        )
        return failures

    async def ping(self) -> bool:
        """检查 Elasticsearch 可达性

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        try:
            if self._client is None:
                await self.open()
            resp = await self._client.get("/", timeout=PING_TIMEOUT_S)
            return resp.status_code == 200
        except Exception as e:
            log.debug("search_ping_failed", url=self._base_url, error=str(e))
            return False
