"""LogHarbor Routing -- Storage Profile Registry + Routing Rules Engine"""

from .loader import RoutingConfig, build_routing_engine
from .profiles import ProfileRegistry
from .rules import (
    CategoryRule,
    KindLevelRule,
    RoutingEngine,
    RoutingRules,
    compile_pattern,
    get_default_rules,
    match_pattern,
)

__all__ = [
    "ProfileRegistry",
    "RoutingEngine",
    "RoutingRules",
    "CategoryRule",
    "KindLevelRule",
    "RoutingConfig",
    "build_routing_engine",
    "get_default_rules",
    "compile_pattern",
    "match_pattern",
]
