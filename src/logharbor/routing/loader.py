"""路由配置加载 -- 内置默认配置或 JSON 文件

JSON 文件格式:
    {
      "profiles": [{"name": "HOT_SEARCH", "destinations": ["search-index"],
                    "ttl_days": 30, "index_prefix": "logs-hot"}, ...],
      "rules": {"overrides": [...], "by_category": [...],
                "by_kind_and_level": [...], "fallback_profile": "HOT_SEARCH"}
    }
"""

from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from ..models.profile import StorageProfile
from .profiles import ProfileRegistry
from .rules import RoutingEngine, RoutingRules

log = structlog.get_logger()


class RoutingConfig(BaseModel):
    """profile 表 + 路由规则"""

    profiles: list[StorageProfile] = Field(default_factory=list)
    rules: RoutingRules


def build_routing_engine(routing_file: str | Path | None = None) -> RoutingEngine:
    """构建路由引擎（尚未校验，由调用方在启动时调用 validate()）

    Args:
        routing_file: JSON 配置文件路径，None 时使用内置默认配置

    Raises:
        OSError: 文件不可读
        pydantic.ValidationError: 文件内容不合法
    """
    if routing_file is None:
        return RoutingEngine(ProfileRegistry())

    path = Path(routing_file)
    config = RoutingConfig.model_validate_json(path.read_text(encoding="utf-8"))
    log.info(
        "routing_config_loaded",
        path=str(path),
        profiles=len(config.profiles),
    )
    return RoutingEngine(ProfileRegistry(config.profiles), config.rules)
