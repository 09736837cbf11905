"""CLI 入口模块 -- python -m logharbor <command>

支持的命令：
  run-worker        启动投递 Worker，直到 SIGINT / SIGTERM
  stats             输出缓冲区长度 / pending 数 / 死信数
  validate-routing  校验路由配置（profile 引用完整性）
  purge-documents   删除文档存储中已过保留期的文档
"""

import asyncio
import signal
import sys

from .config import HarborConfig, load_config
from .logging_config import setup_logging

_COMMANDS = {
    "run-worker": "启动投递 Worker，直到 SIGINT / SIGTERM",
    "stats": "输出缓冲区长度 / pending 数 / 死信数",
    "validate-routing": "校验路由配置（profile 引用完整性）",
    "purge-documents": "删除文档存储中已过保留期的文档",
}


def _usage() -> None:
    print("用法: python -m logharbor <command>")
    print("命令:")
    for name, desc in _COMMANDS.items():
        print(f"  {name:<18}{desc}")


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        _usage()
        sys.exit(1)

    command = sys.argv[1]
    if command not in _COMMANDS:
        print(f"未知命令: {command}")
        print(f"可用命令: {', '.join(_COMMANDS)}")
        sys.exit(1)

    setup_logging()
    config = load_config()

    if command == "run-worker":
        asyncio.run(run_worker(config))
    elif command == "stats":
        asyncio.run(show_stats(config))
    elif command == "validate-routing":
        sys.exit(validate_routing(config))
    elif command == "purge-documents":
        asyncio.run(purge_documents(config))


async def run_worker(config: HarborConfig) -> None:
    """启动 Worker 主循环"""
    from .buffer import open_buffer_group
    from .routing import build_routing_engine
    from .sinks import DocumentStoreSink, SearchIndexSink
    from .worker import BatchWorker

    routing = build_routing_engine(config.routing_file)
    buffer_group = await open_buffer_group(
        config.buffer_db_path,
        stream=config.stream_name,
        dead_letter_stream=config.dead_letter_stream,
        claim_idle_s=config.claim_idle_s,
    )
    search = SearchIndexSink(
        base_url=config.elasticsearch_url,
        default_index_alias=config.index_alias,
        api_key=config.elasticsearch_api_key.get_secret_value(),
        username=config.elasticsearch_username,
        password=config.elasticsearch_password.get_secret_value(),
        timeout_s=config.elasticsearch_timeout_s,
    )
    documents = DocumentStoreSink(db_path=config.docstore_db_path)

    worker = BatchWorker(
        buffer=buffer_group.intake,
        dead_letter=buffer_group.dead_letter,
        routing=routing,
        sinks={search.destination: search, documents.destination: documents},
        group=config.consumer_group,
        batch_size=config.batch_size,
        block_s=config.block_timeout_s,
        backoff_s=config.backoff_s,
        max_deliveries=config.max_deliveries,
        docstore_failures_to_dlq=config.docstore_failures_to_dlq,
        stream_name=config.stream_name,
        resources=[buffer_group],
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_shutdown)

    print(f"Worker {worker.consumer_id} 启动，stream={config.stream_name}")
    await worker.run()
    print("Worker 已停止")


async def show_stats(config: HarborConfig) -> None:
    """输出只读计数器"""
    from .buffer import open_buffer_group

    buffer_group = await open_buffer_group(
        config.buffer_db_path,
        stream=config.stream_name,
        dead_letter_stream=config.dead_letter_stream,
    )
    try:
        print(f"缓冲区: {config.buffer_db_path}")
        print(f"  {config.stream_name}: {await buffer_group.intake.length()} 条")
        print(
            f"  pending ({config.consumer_group}): "
            f"{await buffer_group.intake.pending_count(config.consumer_group)} 条"
        )
        print(f"  {config.dead_letter_stream}: {await buffer_group.dead_letter.length()} 条")
    finally:
        await buffer_group.close()


def validate_routing(config: HarborConfig) -> int:
    """校验路由配置，返回进程退出码"""
    from .routing import build_routing_engine

    engine = build_routing_engine(config.routing_file)
    errors = engine.validation_errors()
    if errors:
        print("路由配置无效:")
        for error in errors:
            print(f"  - {error}")
        return 1
    print(f"路由配置有效，共 {len(engine.registry)} 个 profile")
    return 0


async def purge_documents(config: HarborConfig) -> None:
    """清理过期文档"""
    from .sinks import DocumentStoreSink

    documents = DocumentStoreSink(db_path=config.docstore_db_path)
    await documents.open()
    try:
        deleted = await documents.purge_expired()
        print(f"已删除 {deleted} 条过期文档")
    finally:
        await documents.close()


if __name__ == "__main__":
    main()
