"""ProfileRegistry -- 存储 profile 注册表

启动时从配置加载，运行期间不变（无运行时修改接口）。
"""

import structlog

from ..models.enums import Destination
from ..models.profile import StorageProfile

log = structlog.get_logger()


def _get_default_profiles() -> list[StorageProfile]:
    """获取默认 profile 配置"""
    return [
        StorageProfile(
            name="HOT_SEARCH",
            destinations=frozenset({Destination.SEARCH_INDEX}),
            ttl_days=30,
            index_prefix="logs-hot",
        ),
        StorageProfile(
            name="LONG_TERM",
            destinations=frozenset({Destination.DOCUMENT_STORE}),
            ttl_days=365,
            collection="logs_long_term",
        ),
        StorageProfile(
            name="AUDIT",
            destinations=frozenset({Destination.DOCUMENT_STORE}),
            ttl_days=3650,
            collection="logs_audit",
        ),
        StorageProfile(
            name="DEBUG_SHORT",
            destinations=frozenset({Destination.SEARCH_INDEX}),
            ttl_days=7,
            index_prefix="logs-debug",
        ),
        StorageProfile(
            name="CRITICAL_DUAL",
            destinations=frozenset(
                {Destination.SEARCH_INDEX, Destination.DOCUMENT_STORE}
            ),
            ttl_days=90,
            index_prefix="logs-critical",
            collection="logs_critical",
        ),
        StorageProfile(
            name="DLQ",
            destinations=frozenset({Destination.DOCUMENT_STORE}),
            ttl_days=90,
            collection="logs_dlq",
        ),
    ]


class ProfileRegistry:
    """Profile 注册表 -- 名称 -> StorageProfile"""

    def __init__(self, profiles: list[StorageProfile] | None = None) -> None:
        """初始化注册表

        Args:
            profiles: profile 列表，None 时使用默认配置

        Raises:
            ValueError: profile 名称重复
        """
        profile_list = profiles if profiles is not None else _get_default_profiles()
        self._profiles: dict[str, StorageProfile] = {}
        for profile in profile_list:
            if profile.name in self._profiles:
                raise ValueError(f"duplicate storage profile: {profile.name}")
            self._profiles[profile.name] = profile

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def get(self, name: str) -> StorageProfile:
        """按名称查询 profile

        Raises:
            KeyError: profile 不存在（启动校验通过后不应发生）
        """
        try:
            return self._profiles[name]
        except KeyError:
            log.error("storage_profile_not_found", profile=name)
            raise

    def names(self) -> set[str]:
        return set(self._profiles)

    def list_all(self) -> list[StorageProfile]:
        """列出所有 profile（按 name 排序）"""
        return sorted(self._profiles.values(), key=lambda p: p.name)
