"""RoutingEngine 单元测试

测试内容：
1. 四层优先级：overrides > category 模式 > kind+level > fallback
2. glob 模式：仅 * 为通配符、大小写不敏感、锚定匹配
3. kind 通配项与缺省 level
4. 解析确定性
5. 启动期引用校验
"""

import pytest
from logharbor.exceptions import RoutingConfigError
from logharbor.models import Destination, LogEvent
from logharbor.routing import (
    CategoryRule,
    KindLevelRule,
    ProfileRegistry,
    RoutingEngine,
    RoutingRules,
    match_pattern,
)


@pytest.fixture
def engine() -> RoutingEngine:
    """默认 profile + 默认规则"""
    return RoutingEngine(ProfileRegistry())


def _event(**fields) -> LogEvent:
    return LogEvent.model_validate(fields)


class TestRoutingPrecedence:
    """规则层优先级"""

    def test_override_beats_kind_level(self, engine: RoutingEngine):
        """dlq.* 覆盖规则优先于 kind+level"""
        event = _event(category="dlq.retry", kind="BUSINESS", level="ERROR")
        assert engine.resolve_profile(event) == "DLQ"

    def test_audit_override(self, engine: RoutingEngine):
        """audit.* 覆盖规则"""
        event = _event(category="audit.login", kind="SYSTEM", level="DEBUG")
        assert engine.resolve_profile(event) == "AUDIT"

    def test_category_pattern_beats_kind_level(self, engine: RoutingEngine):
        """category 模式优先于 kind+level"""
        event = _event(category="facebook.webhook", kind="BUSINESS", level="INFO")
        assert engine.resolve_profile(event) == "HOT_SEARCH"

        event = _event(category="analytics.pageview", kind="SYSTEM", level="ERROR")
        assert engine.resolve_profile(event) == "LONG_TERM"

    def test_override_beats_category_regardless_of_order(self):
        """即使 category 规则声明在前，overrides 仍先求值"""
        rules = RoutingRules(
            by_category=[CategoryRule(pattern="x.*", profile="LONG_TERM")],
            overrides=[CategoryRule(pattern="x.special", profile="AUDIT")],
            fallback_profile="HOT_SEARCH",
        )
        engine = RoutingEngine(ProfileRegistry(), rules)
        assert engine.resolve_profile(_event(category="x.special")) == "AUDIT"
        assert engine.resolve_profile(_event(category="x.other")) == "LONG_TERM"

    def test_system_error_routes_to_dual_profile(self, engine: RoutingEngine):
        """SYSTEM/ERROR 解析到同时写入两个目的地的 profile"""
        event = _event(category="payments.gateway", kind="SYSTEM", level="ERROR")
        profile = engine.resolve(event)
        assert profile.name == "CRITICAL_DUAL"
        assert profile.destinations == {Destination.SEARCH_INDEX, Destination.DOCUMENT_STORE}

    @pytest.mark.parametrize(
        "kind,level,expected",
        [
            ("BUSINESS", "INFO", "LONG_TERM"),
            ("BUSINESS", "WARN", "CRITICAL_DUAL"),
            ("BUSINESS", "TRACE", "DEBUG_SHORT"),
            ("SYSTEM", "INFO", "HOT_SEARCH"),
            ("SYSTEM", "DEBUG", "DEBUG_SHORT"),
            ("SYSTEM", "FATAL", "CRITICAL_DUAL"),
            ("SECURITY", "WARN", "CRITICAL_DUAL"),
            ("SECURITY", "INFO", "HOT_SEARCH"),
        ],
    )
    def test_kind_level_table(self, engine: RoutingEngine, kind: str, level: str, expected: str):
        """kind+level 查找表"""
        event = _event(category="misc.thing", kind=kind, level=level)
        assert engine.resolve_profile(event) == expected


class TestRoutingWildcardsAndFallback:
    """kind 通配项与 fallback"""

    def test_kind_wildcard_matches_any_level(self, engine: RoutingEngine):
        """ANALYTICS 无论 level 都解析到 LONG_TERM"""
        for level in ("TRACE", "INFO", "FATAL"):
            assert engine.resolve_profile(_event(kind="ANALYTICS", level=level)) == "LONG_TERM"

    def test_kind_wildcard_when_level_missing(self, engine: RoutingEngine):
        """缺省 level 时使用该 kind 的通配项"""
        assert engine.resolve_profile(_event(kind="AUDIT")) == "AUDIT"

    def test_missing_level_without_wildcard_falls_back(self, engine: RoutingEngine):
        """kind 无通配项且缺省 level 时落到 fallback"""
        assert engine.resolve_profile(_event(kind="SYSTEM")) == "HOT_SEARCH"

    def test_specific_level_beats_wildcard(self):
        """具体 level 规则优先于通配项"""
        rules = RoutingRules(
            by_kind_and_level=[
                KindLevelRule(kind="SYSTEM", profile="LONG_TERM"),
                KindLevelRule(kind="SYSTEM", level="ERROR", profile="CRITICAL_DUAL"),
            ],
            fallback_profile="HOT_SEARCH",
        )
        engine = RoutingEngine(ProfileRegistry(), rules)
        assert engine.resolve_profile(_event(kind="SYSTEM", level="ERROR")) == "CRITICAL_DUAL"
        assert engine.resolve_profile(_event(kind="SYSTEM", level="INFO")) == "LONG_TERM"

    def test_empty_event_uses_fallback(self, engine: RoutingEngine):
        """无 category / kind / level 时解析到 fallback"""
        assert engine.resolve_profile(_event()) == "HOT_SEARCH"

    def test_resolution_is_deterministic(self, engine: RoutingEngine):
        """同一事件多次解析结果一致"""
        event = _event(category="business.order", kind="SECURITY", level="ERROR")
        results = {engine.resolve_profile(event) for _ in range(20)}
        assert results == {"LONG_TERM"}


class TestPatternMatching:
    """glob 模式匹配"""

    @pytest.mark.parametrize(
        "category,pattern,expected",
        [
            ("facebook.feed", "facebook.*", True),
            ("FACEBOOK.Feed", "facebook.*", True),
            ("facebookXfeed", "facebook.*", False),
            ("my.facebook.feed", "facebook.*", False),
            ("a.b.c", "a.*.c", True),
            ("exact", "exact", True),
            ("exact.more", "exact", False),
            ("x(1)+", "x(1)+", True),
            ("", "*", False),
        ],
    )
    def test_match_pattern(self, category: str, pattern: str, expected: bool):
        """仅 * 为通配符，其余字符按字面匹配"""
        assert match_pattern(category, pattern) is expected


class TestRoutingValidation:
    """启动期引用校验"""

    def test_default_config_is_valid(self, engine: RoutingEngine):
        """默认配置通过校验"""
        assert engine.validation_errors() == []
        engine.validate()

    def test_unknown_profile_reference_rejected(self):
        """规则引用不存在的 profile 时拒绝启动"""
        rules = RoutingRules(
            overrides=[CategoryRule(pattern="dlq.*", profile="MISSING")],
            by_kind_and_level=[KindLevelRule(kind="SYSTEM", profile="ALSO_MISSING")],
            fallback_profile="HOT_SEARCH",
        )
        engine = RoutingEngine(ProfileRegistry(), rules)

        with pytest.raises(RoutingConfigError) as exc_info:
            engine.validate()

        assert len(exc_info.value.errors) == 2
        assert exc_info.value.recoverable is False
        assert any("MISSING" in e for e in exc_info.value.errors)

    def test_unknown_fallback_rejected(self):
        """fallback profile 同样需要存在"""
        engine = RoutingEngine(
            ProfileRegistry(),
            RoutingRules(fallback_profile="NOPE"),
        )
        assert engine.validation_errors() == [
            "Profile 'NOPE' is referenced but does not exist in the registry"
        ]
