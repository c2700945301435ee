import datetime
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class IoMessageLevel(str, Enum):
    ERROR = "error"
    RESULT = "result"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"
    TRACE = "trace"

    @property
    def priority(self) -> int:
        return _LEVEL_PRIORITY[self]

    @property
    def logging_level(self) -> int:
        return _LOGGING_LEVELS[self]


# lower numbers are more important
_LEVEL_PRIORITY = {
    IoMessageLevel.ERROR: 0,
    IoMessageLevel.RESULT: 1,
    IoMessageLevel.WARN: 2,
    IoMessageLevel.INFO: 3,
    IoMessageLevel.DEBUG: 4,
    IoMessageLevel.TRACE: 5,
}

_LOGGING_LEVELS = {
    IoMessageLevel.ERROR: logging.ERROR,
    IoMessageLevel.RESULT: logging.INFO,
    IoMessageLevel.WARN: logging.WARNING,
    IoMessageLevel.INFO: logging.INFO,
    IoMessageLevel.DEBUG: logging.DEBUG,
    IoMessageLevel.TRACE: logging.DEBUG,
}


def is_message_relevant_for_level(message: "IoMessage", level: IoMessageLevel) -> bool:
    return message.level.priority <= level.priority


@dataclass
class IoMessage(Generic[T]):
    level: IoMessageLevel
    code: str
    message: str
    action: str = "deploy"
    data: Optional[T] = None
    time: datetime.datetime = field(default_factory=datetime.datetime.now)


@dataclass(frozen=True)
class IoMessageMaker(Generic[T]):
    """The definition of a message code, used to create messages with that code."""

    code: str
    level: IoMessageLevel
    description: str

    def msg(self, message: str, data: Optional[T] = None) -> IoMessage[T]:
        return IoMessage(level=self.level, code=self.code, message=message, data=data)

    def matches(self, message: IoMessage) -> bool:
        return message.code == self.code


class IO:
    """Registry of all message codes emitted during a hotswap deployment."""

    DEFAULT_INFO = IoMessageMaker[Any]("DEFAULT_INFO", IoMessageLevel.INFO, "Default info messages")
    DEFAULT_DEBUG = IoMessageMaker[Any]("DEFAULT_DEBUG", IoMessageLevel.DEBUG, "Default debug messages")

    HOTSWAP_I5400 = IoMessageMaker[Any](
        "HOTSWAP_I5400", IoMessageLevel.TRACE, "Attempting a hotswap deployment"
    )
    HOTSWAP_I5401 = IoMessageMaker[Any](
        "HOTSWAP_I5401", IoMessageLevel.TRACE, "Computed details for the hotswap deployment"
    )
    HOTSWAP_I5402 = IoMessageMaker[Any](
        "HOTSWAP_I5402",
        IoMessageLevel.INFO,
        "A hotswappable change is processed as part of a hotswap deployment",
    )
    HOTSWAP_I5403 = IoMessageMaker[Any](
        "HOTSWAP_I5403", IoMessageLevel.INFO, "The hotswappable change has completed processing"
    )
    HOTSWAP_I5410 = IoMessageMaker[Any](
        "HOTSWAP_I5410",
        IoMessageLevel.INFO,
        "Hotswap deployment has ended, a full deployment might still follow if needed",
    )
    HOTSWAP_W5400 = IoMessageMaker[Any](
        "HOTSWAP_W5400", IoMessageLevel.WARN, "Hotswap disclosure message"
    )
