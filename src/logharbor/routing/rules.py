"""RoutingEngine -- 事件属性 -> 存储 profile 名称

规则分四层，按固定优先级求值（与层内声明顺序无关）：
1. overrides: category 覆盖规则（最高优先级，如 dlq.* / audit.*）
2. by_category: category 模式的领域规则
3. by_kind_and_level: kind + level 查找表，缺失具体 level 时尝试该 kind 的通配项
4. fallback_profile: 兜底 profile

求值为纯函数：同一事件总是解析到同一 profile。
"""

import re
from functools import lru_cache

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import RoutingConfigError
from ..models.enums import LogKind, LogLevel
from ..models.event import LogEvent
from ..models.profile import StorageProfile
from .profiles import ProfileRegistry

log = structlog.get_logger()


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """将 glob 模式编译为锚定、大小写不敏感的正则

    仅 `*` 为通配符（匹配任意字符序列），其余字符按字面匹配。
    """
    escaped = re.escape(pattern).replace(r"\*", ".*")
    return re.compile(f"^{escaped}$", re.IGNORECASE)


def match_pattern(category: str, pattern: str) -> bool:
    if not category or not pattern:
        return False
    return compile_pattern(pattern).match(category) is not None


class CategoryRule(BaseModel):
    """category 模式 -> profile"""

    model_config = ConfigDict(frozen=True)

    pattern: str = Field(description="glob 模式，如 facebook.*")
    profile: str

    def matches(self, category: str) -> bool:
        return match_pattern(category, self.pattern)


class KindLevelRule(BaseModel):
    """kind + level -> profile；level 为 None 表示该 kind 的通配项"""

    model_config = ConfigDict(frozen=True)

    kind: LogKind
    level: LogLevel | None = None
    profile: str


class RoutingRules(BaseModel):
    """四层路由规则"""

    model_config = ConfigDict(frozen=True)

    overrides: list[CategoryRule] = Field(default_factory=list)
    by_category: list[CategoryRule] = Field(default_factory=list)
    by_kind_and_level: list[KindLevelRule] = Field(default_factory=list)
    fallback_profile: str

    def referenced_profiles(self) -> set[str]:
        """收集所有层引用的 profile 名称"""
        names = {rule.profile for rule in self.overrides}
        names.update(rule.profile for rule in self.by_category)
        names.update(rule.profile for rule in self.by_kind_and_level)
        names.add(self.fallback_profile)
        return names


def _kind_table(
    kind: LogKind,
    error: str,
    warn: str,
    info: str,
    debug: str,
    fatal: str,
) -> list[KindLevelRule]:
    return [
        KindLevelRule(kind=kind, level=LogLevel.ERROR, profile=error),
        KindLevelRule(kind=kind, level=LogLevel.WARN, profile=warn),
        KindLevelRule(kind=kind, level=LogLevel.INFO, profile=info),
        KindLevelRule(kind=kind, level=LogLevel.DEBUG, profile=debug),
        KindLevelRule(kind=kind, level=LogLevel.TRACE, profile=debug),
        KindLevelRule(kind=kind, level=LogLevel.FATAL, profile=fatal),
    ]


def get_default_rules() -> RoutingRules:
    """获取默认路由规则"""
    return RoutingRules(
        overrides=[
            CategoryRule(pattern="dlq.*", profile="DLQ"),
            CategoryRule(pattern="audit.*", profile="AUDIT"),
        ],
        by_category=[
            CategoryRule(pattern="facebook.*", profile="HOT_SEARCH"),
            CategoryRule(pattern="flickr.*", profile="HOT_SEARCH"),
            CategoryRule(pattern="stealthflow.*", profile="HOT_SEARCH"),
            CategoryRule(pattern="business.*", profile="LONG_TERM"),
            CategoryRule(pattern="analytics.*", profile="LONG_TERM"),
        ],
        by_kind_and_level=[
            *_kind_table(
                LogKind.BUSINESS,
                error="CRITICAL_DUAL",
                warn="CRITICAL_DUAL",
                info="LONG_TERM",
                debug="DEBUG_SHORT",
                fatal="CRITICAL_DUAL",
            ),
            *_kind_table(
                LogKind.SYSTEM,
                error="CRITICAL_DUAL",
                warn="HOT_SEARCH",
                info="HOT_SEARCH",
                debug="DEBUG_SHORT",
                fatal="CRITICAL_DUAL",
            ),
            KindLevelRule(kind=LogKind.ANALYTICS, profile="LONG_TERM"),
            KindLevelRule(kind=LogKind.AUDIT, profile="AUDIT"),
            *_kind_table(
                LogKind.SECURITY,
                error="CRITICAL_DUAL",
                warn="CRITICAL_DUAL",
                info="HOT_SEARCH",
                debug="DEBUG_SHORT",
                fatal="CRITICAL_DUAL",
            ),
        ],
        fallback_profile="HOT_SEARCH",
    )


class RoutingEngine:
    """路由引擎 -- resolve_profile() 从不失败

    Registry 仅用于校验规则引用与查询 profile 对象。
    """

    def __init__(
        self,
        registry: ProfileRegistry,
        rules: RoutingRules | None = None,
    ) -> None:
        self._registry = registry
        self._rules = rules if rules is not None else get_default_rules()
        # (kind, level) -> profile；level=None 为通配项；同键先声明者生效
        self._kind_level: dict[tuple[LogKind, LogLevel | None], str] = {}
        for rule in self._rules.by_kind_and_level:
            self._kind_level.setdefault((rule.kind, rule.level), rule.profile)

    @property
    def rules(self) -> RoutingRules:
        return self._rules

    @property
    def registry(self) -> ProfileRegistry:
        return self._registry

    def resolve_profile(self, event: LogEvent) -> str:
        """解析事件的存储 profile 名称"""
        category = event.category

        # 1. overrides
        if category:
            for rule in self._rules.overrides:
                if rule.matches(category):
                    return rule.profile

        # 2. category 模式
        if category:
            for rule in self._rules.by_category:
                if rule.matches(category):
                    return rule.profile

        # 3. kind + level，具体 level 优先，其次该 kind 的通配项
        if event.kind is not None:
            if event.level is not None:
                profile = self._kind_level.get((event.kind, event.level))
                if profile is not None:
                    return profile
            profile = self._kind_level.get((event.kind, None))
            if profile is not None:
                return profile

        # 4. fallback
        return self._rules.fallback_profile

    def resolve(self, event: LogEvent) -> StorageProfile:
        """解析事件的 StorageProfile 对象"""
        return self._registry.get(self.resolve_profile(event))

    def validation_errors(self) -> list[str]:
        """检查所有规则引用的 profile 均存在于 Registry"""
        errors = []
        for name in sorted(self._rules.referenced_profiles()):
            if name not in self._registry:
                errors.append(
                    f"Profile '{name}' is referenced but does not exist in the registry"
                )
        return errors

    def validate(self) -> None:
        """启动期校验，失败时拒绝启动

        Raises:
            RoutingConfigError: 存在引用了未知 profile 的规则
        """
        errors = self.validation_errors()
        if errors:
            log.error("routing_config_invalid", errors=errors)
            raise RoutingConfigError(errors)
        log.info(
            "routing_config_validated",
            profiles=len(self._registry),
            overrides=len(self._rules.overrides),
            category_rules=len(self._rules.by_category),
            kind_level_rules=len(self._rules.by_kind_and_level),
        )
