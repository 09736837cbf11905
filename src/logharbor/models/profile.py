"""StorageProfile Domain Model -- 命名的存储策略

profile 是进程级只读配置：启动时加载，运行期间不变。
这是唯一声明具体目的地（search-index / document-store）的地方。
"""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import Destination

# 未声明 collection 的 document-store profile 写入此集合
DEFAULT_COLLECTION = "logs_default"


class StorageProfile(BaseModel):
    """存储 profile：目的地集合 + 保留期 + 各目的地命名策略"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="profile 名称，如 HOT_SEARCH")
    destinations: frozenset[Destination] = Field(description="目的地集合，非空")
    ttl_days: int = Field(ge=1, description="保留天数")
    index_prefix: str | None = Field(
        default=None,
        description="搜索索引前缀，实际索引名为 <prefix>-YYYY.MM.DD",
    )
    collection: str | None = Field(default=None, description="文档存储集合名")

    @field_validator("destinations")
    @classmethod
    def _non_empty(cls, value: frozenset[Destination]) -> frozenset[Destination]:
        if not value:
            raise ValueError("destinations must not be empty")
        return value

    def targets(self, destination: Destination) -> bool:
        return destination in self.destinations

    def index_name(self, day: date, default_alias: str) -> str:
        """计算搜索索引名

        Args:
            day: 写入日期
            default_alias: 未配置 index_prefix 时使用的默认索引别名
        """
        if not self.index_prefix:
            return default_alias
        return f"{self.index_prefix}-{day.strftime('%Y.%m.%d')}"

    def collection_name(self) -> str:
        return self.collection or DEFAULT_COLLECTION
