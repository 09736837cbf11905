"""领域模型单元测试

测试内容：
1. LogEvent 默认值、大小写不敏感枚举、旧版字段保留、不可变
2. StorageProfile 命名策略
3. Worker 状态机流转
4. DeadLetterEntry 序列化
"""

import json
from datetime import UTC, date, datetime

import pytest
from logharbor.models import (
    DEFAULT_COLLECTION,
    VALID_TRANSITIONS,
    DeadLetterEntry,
    Destination,
    FailureReason,
    ItemFailure,
    LogEvent,
    LogKind,
    LogLevel,
    OriginalMessage,
    PartialResult,
    StorageProfile,
    WorkerState,
    validate_transition,
)
from pydantic import ValidationError


class TestLogEvent:
    """LogEvent 数据模型"""

    def test_defaults_generated(self):
        """缺省 id / timestamp 自动生成"""
        event = LogEvent(category="payments.charge")
        assert len(event.id) == 26
        assert event.timestamp.tzinfo is not None
        assert event.level is None
        assert event.kind is None
        assert event.context == {}
        assert event.tags == []

    def test_ids_are_unique(self):
        """自动生成的 id 互不相同"""
        ids = {LogEvent().id for _ in range(50)}
        assert len(ids) == 50

    def test_level_and_kind_case_insensitive(self):
        """level / kind 大小写不敏感，WARNING 视为 WARN"""
        event = LogEvent.model_validate({"level": "warning", "kind": "system"})
        assert event.level == LogLevel.WARN
        assert event.kind == LogKind.SYSTEM

        event = LogEvent.model_validate({"level": "Error", "kind": "Business"})
        assert event.level == LogLevel.ERROR
        assert event.kind == LogKind.BUSINESS

    def test_empty_level_treated_as_missing(self):
        """空字符串 level 视为缺省"""
        event = LogEvent.model_validate({"level": "", "kind": ""})
        assert event.level is None
        assert event.kind is None

    def test_unknown_level_rejected(self):
        """未知 level 抛出校验错误"""
        with pytest.raises(ValidationError):
            LogEvent.model_validate({"level": "VERBOSE"})

    def test_naive_timestamp_becomes_utc(self):
        """无时区时间按 UTC 处理"""
        event = LogEvent(timestamp=datetime(2024, 5, 1, 12, 0, 0))
        assert event.timestamp.tzinfo == UTC

    def test_frozen(self):
        """事件不可变"""
        event = LogEvent(category="a.b")
        with pytest.raises(ValidationError):
            event.category = "c.d"

    def test_legacy_fields_preserved_as_extra(self):
        """旧版格式字段作为 extra 保留"""
        event = LogEvent.model_validate(
            {
                "category": "orders",
                "operation": "order_created",
                "accountUID": "acc-1",
                "metadata": {"amount": 12.5},
            }
        )
        assert event.is_legacy is True
        assert event.legacy_field("operation") == "order_created"
        assert event.legacy_field("accountUID") == "acc-1"
        assert event.legacy_field("missing", "default") == "default"

    def test_current_schema_not_legacy(self):
        """schema_version=1 为当前格式"""
        assert LogEvent(schema_version=1).is_legacy is False

    def test_to_json_uses_log_id_and_round_trips(self):
        """序列化后 id 以 log_id 输出，再次解析得到同一事件"""
        event = LogEvent.model_validate(
            {"kind": "AUDIT", "level": "INFO", "category": "audit.login", "operation": "x"}
        )
        data = json.loads(event.to_json())
        assert data["log_id"] == event.id
        assert "id" not in data
        assert data["operation"] == "x"

        restored = LogEvent.model_validate_json(event.to_json())
        assert restored.id == event.id
        assert restored.kind == LogKind.AUDIT
        assert restored.timestamp == event.timestamp

    def test_id_accepted_under_both_keys(self):
        """id / log_id 两种键都可作为事件 id"""
        assert LogEvent.model_validate({"id": "evt-1"}).id == "evt-1"
        assert LogEvent.model_validate({"log_id": "evt-2"}).id == "evt-2"

    def test_null_attachments_coerced(self):
        """null 附件字段转为空容器"""
        event = LogEvent.model_validate(
            {"context": None, "payload": None, "tags": None, "message": None}
        )
        assert event.context == {}
        assert event.payload == {}
        assert event.tags == []
        assert event.message == ""

    def test_attachments_accept_any_json_shape(self):
        """附件字段不做形态校验，原样保留并随缓冲区格式往返"""
        event = LogEvent.model_validate_json(
            '{"context": ["u1"], "payload": "raw", "tags": [1, 2], "extra": 7}'
        )
        assert event.context == ["u1"]
        assert event.payload == "raw"
        assert event.tags == [1, 2]
        assert event.extra == 7
        assert LogEvent.model_validate_json(event.to_json()).tags == [1, 2]


class TestStorageProfile:
    """StorageProfile 命名策略"""

    def test_index_name_uses_prefix_and_date(self):
        """索引名 = <prefix>-YYYY.MM.DD"""
        profile = StorageProfile(
            name="HOT_SEARCH",
            destinations=frozenset({Destination.SEARCH_INDEX}),
            ttl_days=30,
            index_prefix="logs-hot",
        )
        assert profile.index_name(date(2024, 3, 7), "alias") == "logs-hot-2024.03.07"

    def test_index_name_falls_back_to_alias(self):
        """未配置前缀时使用默认索引别名"""
        profile = StorageProfile(
            name="P",
            destinations=frozenset({Destination.SEARCH_INDEX}),
            ttl_days=1,
        )
        assert profile.index_name(date(2024, 3, 7), "logharbor_logs") == "logharbor_logs"

    def test_collection_default(self):
        """未配置集合时使用默认集合"""
        profile = StorageProfile(
            name="P",
            destinations=frozenset({Destination.DOCUMENT_STORE}),
            ttl_days=1,
        )
        assert profile.collection_name() == DEFAULT_COLLECTION
        assert profile.targets(Destination.DOCUMENT_STORE) is True
        assert profile.targets(Destination.SEARCH_INDEX) is False

    def test_empty_destinations_rejected(self):
        """目的地集合不能为空"""
        with pytest.raises(ValidationError):
            StorageProfile(name="P", destinations=frozenset(), ttl_days=1)

    def test_ttl_must_be_positive(self):
        """ttl_days 至少为 1"""
        with pytest.raises(ValidationError):
            StorageProfile(
                name="P",
                destinations=frozenset({Destination.SEARCH_INDEX}),
                ttl_days=0,
            )

    def test_destinations_parsed_from_strings(self):
        """目的地可由字符串解析"""
        profile = StorageProfile.model_validate(
            {"name": "P", "destinations": ["search-index", "document-store"], "ttl_days": 5}
        )
        assert profile.destinations == {Destination.SEARCH_INDEX, Destination.DOCUMENT_STORE}


class TestWorkerStateMachine:
    """Worker 状态机流转"""

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (WorkerState.IDLE, WorkerState.READING),
            (WorkerState.READING, WorkerState.RESOLVING),
            (WorkerState.READING, WorkerState.IDLE),
            (WorkerState.RESOLVING, WorkerState.WRITING),
            (WorkerState.RESOLVING, WorkerState.ACKNOWLEDGING),
            (WorkerState.WRITING, WorkerState.ACKNOWLEDGING),
            (WorkerState.ACKNOWLEDGING, WorkerState.IDLE),
            (WorkerState.IDLE, WorkerState.DRAINING),
            (WorkerState.DRAINING, WorkerState.STOPPED),
        ],
    )
    def test_valid_transition(self, from_state: WorkerState, to_state: WorkerState):
        """合法流转应通过验证"""
        assert validate_transition(from_state, to_state) is True

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (WorkerState.IDLE, WorkerState.WRITING),
            (WorkerState.READING, WorkerState.ACKNOWLEDGING),
            (WorkerState.WRITING, WorkerState.DRAINING),
            (WorkerState.DRAINING, WorkerState.READING),
        ],
    )
    def test_invalid_transition(self, from_state: WorkerState, to_state: WorkerState):
        """非法流转应被拒绝"""
        assert validate_transition(from_state, to_state) is False

    def test_stopped_is_terminal(self):
        """STOPPED 为终态"""
        assert VALID_TRANSITIONS[WorkerState.STOPPED] == set()
        for target in WorkerState:
            assert validate_transition(WorkerState.STOPPED, target) is False


class TestDeadLetterEntry:
    """DeadLetterEntry 序列化"""

    def test_round_trip(self):
        """序列化后可原样解析"""
        entry = DeadLetterEntry(
            original_message=OriginalMessage(id="m-1", data="{not json"),
            failure_reason=FailureReason.PARSE_ERROR,
            error="Invalid JSON",
            source_stream="logs:stream",
        )
        restored = DeadLetterEntry.model_validate_json(entry.model_dump_json())
        assert restored.original_message.data == "{not json"
        assert restored.failure_reason == FailureReason.PARSE_ERROR
        assert restored.retry_count == 0

    def test_partial_result(self):
        """PartialResult 失败索引"""
        assert PartialResult().ok is True
        result = PartialResult(failures=[ItemFailure(index=2, error="boom")])
        assert result.ok is False
        assert result.failed_indexes == {2}
