import logging
from typing import Any, Optional, Protocol

from stackswap.io.messages import IO, IoMessage, IoMessageMaker

LOG = logging.getLogger("stackswap.io")


class IoHost(Protocol):
    """Receives the structured messages emitted while hotswapping."""

    def notify(self, message: IoMessage) -> None:
        ...


class LoggingIoHost:
    """IO host forwarding every message to the ``stackswap.io`` logger, at the level of the message."""

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or LOG

    def notify(self, message: IoMessage) -> None:
        if not message.message:
            return
        self.logger.log(message.level.logging_level, "%s", message.message)


class IoHelper:
    """Wraps an IO host, tagging every message with the action it belongs to."""

    def __init__(self, io_host: IoHost, action: str = "deploy"):
        self.io_host = io_host
        self.action = action

    def notify(self, message: IoMessage) -> None:
        message.action = self.action
        self.io_host.notify(message)

    def emit(self, maker: IoMessageMaker, message: str, data: Optional[Any] = None) -> None:
        self.notify(maker.msg(message, data))

    def info(self, message: str) -> None:
        self.notify(IO.DEFAULT_INFO.msg(message))

    def debug(self, message: str) -> None:
        self.notify(IO.DEFAULT_DEBUG.msg(message))


def as_io_helper(io_host: IoHost, action: str = "deploy") -> IoHelper:
    if isinstance(io_host, IoHelper):
        return io_host
    return IoHelper(io_host, action)
