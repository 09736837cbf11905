"""HarborConfig -- 进程配置加载

从环境变量加载配置；数值类变量非法时记录 warning 并使用默认值，不阻塞启动。
"""

import os
from typing import Any

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class HarborConfig(BaseModel):
    """LogHarbor 配置

    环境变量:
        LOGHARBOR_BUFFER_DB_PATH: 缓冲区 SQLite 路径
        LOG_STREAM_NAME / LOG_DLQ_STREAM_NAME: intake / 死信 stream 名称
        LOG_CONSUMER_GROUP: consumer group 名称
        LOG_BATCH_SIZE / LOG_BLOCK_TIMEOUT_MS: 每批条数 / 阻塞读取超时
        LOG_INDEX_ALIAS: 默认搜索索引
        ELASTICSEARCH_*: 搜索索引连接与认证
        LOGHARBOR_DOCSTORE_DB_PATH: 文档存储 SQLite 路径
        FALLBACK_*: 本地兜底日志
    """

    # Intake Buffer
    buffer_db_path: str = Field(default="data/sqlite/buffer.db")
    stream_name: str = Field(default="logs:stream")
    dead_letter_stream: str = Field(default="logs:failed")
    consumer_group: str = Field(default="logharbor-log-workers")
    batch_size: int = Field(default=200, ge=1)
    block_timeout_ms: int = Field(default=2000, ge=0)
    claim_idle_s: float = Field(
        default=60.0,
        ge=0,
        description="pending 消息空闲多久后重新投递",
    )
    max_deliveries: int = Field(
        default=5,
        ge=0,
        description="最大投递次数，超过后进入死信；0 表示不限",
    )

    # Worker
    backoff_s: float = Field(default=1.0, ge=0, description="整批失败后的固定退避")
    docstore_failures_to_dlq: bool = Field(
        default=True,
        description="文档存储逐项失败是否进入死信（False 时仅记录日志）",
    )

    # 搜索索引
    index_alias: str = Field(default="logharbor_logs")
    elasticsearch_url: str = Field(default="http://localhost:9200")
    elasticsearch_api_key: SecretStr = Field(default=SecretStr(""))
    elasticsearch_username: str = Field(default="")
    elasticsearch_password: SecretStr = Field(default=SecretStr(""))
    elasticsearch_timeout_s: float = Field(default=30, gt=0)

    # 文档存储
    docstore_db_path: str = Field(default="data/sqlite/documents.db")

    # 路由
    routing_file: str | None = Field(default=None, description="JSON 路由配置文件")

    # 本地兜底日志
    fallback_log_dir: str = Field(default="./logs/fallback")
    fallback_retention_days: int = Field(default=7, ge=1)
    fallback_max_file_bytes: int = Field(default=10 * 1024 * 1024, ge=1)

    @property
    def block_timeout_s(self) -> float:
        return self.block_timeout_ms / 1000


# 环境变量 -> (字段名, 类型)
_ENV_MAPPING: dict[str, tuple[str, type]] = {
    "LOGHARBOR_BUFFER_DB_PATH": ("buffer_db_path", str),
    "LOG_STREAM_NAME": ("stream_name", str),
    "LOG_DLQ_STREAM_NAME": ("dead_letter_stream", str),
    "LOG_CONSUMER_GROUP": ("consumer_group", str),
    "LOG_BATCH_SIZE": ("batch_size", int),
    "LOG_BLOCK_TIMEOUT_MS": ("block_timeout_ms", int),
    "LOGHARBOR_CLAIM_IDLE_S": ("claim_idle_s", float),
    "LOGHARBOR_MAX_DELIVERIES": ("max_deliveries", int),
    "LOGHARBOR_BACKOFF_S": ("backoff_s", float),
    "LOGHARBOR_DOCSTORE_FAILURES_TO_DLQ": ("docstore_failures_to_dlq", bool),
    "LOG_INDEX_ALIAS": ("index_alias", str),
    "ELASTICSEARCH_URL": ("elasticsearch_url", str),
    "ELASTICSEARCH_API_KEY": ("elasticsearch_api_key", SecretStr),
    "ELASTICSEARCH_USERNAME": ("elasticsearch_username", str),
    "ELASTICSEARCH_PASSWORD": ("elasticsearch_password", SecretStr),
    "ELASTICSEARCH_TIMEOUT_S": ("elasticsearch_timeout_s", float),
    "LOGHARBOR_DOCSTORE_DB_PATH": ("docstore_db_path", str),
    "LOGHARBOR_ROUTING_FILE": ("routing_file", str),
    "FALLBACK_LOG_DIR": ("fallback_log_dir", str),
    "FALLBACK_RETENTION_DAYS": ("fallback_retention_days", int),
    "FALLBACK_MAX_FILE_BYTES": ("fallback_max_file_bytes", int),
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {value}")


def load_config(environ: dict[str, str] | None = None) -> HarborConfig:
    """从环境变量加载配置

    Args:
        environ: 环境变量字典，None 时读取 os.environ

    Returns:
        HarborConfig 实例
    """
    env = os.environ if environ is None else environ
    kwargs: dict[str, Any] = {}
    defaults = HarborConfig()

    for env_var, (field_name, field_type) in _ENV_MAPPING.items():
        val = env.get(env_var)
        if not val:
            continue
        try:
            if field_type is bool:
                parsed: Any = _parse_bool(val)
            elif field_type is SecretStr:
                parsed = SecretStr(val)
            else:
                parsed = field_type(val)
        except ValueError:
            log.warning(
                "invalid_config_value",
                env_var=env_var,
                value=val,
                fallback=getattr(defaults, field_name),
            )
            # 使用默认值，不阻塞启动
            continue
        kwargs[field_name] = parsed

    try:
        return HarborConfig(**kwargs)
    except ValueError as e:
        # 越界值（如负数 batch size）同样降级为默认值
        log.warning("invalid_config_range", error=str(e))
        valid = {}
        for name, value in kwargs.items():
            try:
                HarborConfig(**{name: value})
                valid[name] = value
            except ValueError:
                continue
        return HarborConfig(**valid)
