from stackswap.io.host import IoHelper, IoHost, LoggingIoHost, as_io_helper
from stackswap.io.messages import (
    IO,
    IoMessage,
    IoMessageLevel,
    IoMessageMaker,
    is_message_relevant_for_level,
)

__all__ = [
    "IO",
    "IoHelper",
    "IoHost",
    "IoMessage",
    "IoMessageLevel",
    "IoMessageMaker",
    "LoggingIoHost",
    "as_io_helper",
    "is_message_relevant_for_level",
]
