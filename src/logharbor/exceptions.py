"""LogHarbor 异常体系

可恢复错误（缓冲区/ sink 不可达）由调用方降级或重试；
RoutingConfigError 是唯一致命的配置错误，进程应拒绝启动。
"""


class LogHarborError(Exception):
    """LogHarbor 基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试或降级恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class BufferUnavailableError(LogHarborError):
    """Intake Buffer 不可达（连接失败、磁盘错误、数据库锁超时等）

    入站时触发 FallbackLogger 降级；Worker 中触发整批中止。
    """

    def __init__(self, stream: str, original_error: Exception) -> None:
        super().__init__(
            f"缓冲区不可达: {stream} -- {original_error}",
            recoverable=True,
        )
        self.stream = stream
        self.original_error = original_error


class ConsumerGroupNotFoundError(LogHarborError):
    """读取前未创建 consumer group"""

    def __init__(self, stream: str, group: str) -> None:
        super().__init__(
            f"consumer group 不存在: {stream}/{group}",
            recoverable=False,
        )
        self.stream = stream
        self.group = group


class SinkUnavailableError(LogHarborError):
    """Sink 整体不可用（连接失败、批量调用失败）

    此异常中止当前批次，不确认任何消息，等待重投。
    """

    def __init__(self, destination: str, original_error: Exception | str) -> None:
        super().__init__(
            f"Sink 不可用: {destination} -- {original_error}",
            recoverable=True,
        )
        self.destination = destination
        self.original_error = original_error


class DeadLetterError(LogHarborError):
    """死信写入失败 -- 对应消息保持未确认，等待重投"""

    def __init__(self, message_id: str, original_error: Exception) -> None:
        super().__init__(
            f"死信写入失败: {message_id} -- {original_error}",
            recoverable=True,
        )
        self.message_id = message_id
        self.original_error = original_error


class RoutingConfigError(LogHarborError):
    """路由配置错误：规则引用了不存在的 profile"""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            "路由配置校验失败: " + "; ".join(errors),
            recoverable=False,
        )
        self.errors = errors
