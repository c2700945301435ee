import logging

from stackswap.io import IO, IoHelper, IoMessageLevel, LoggingIoHost, as_io_helper
from stackswap.testing import RecordingIoHost


def test_recording_io_host_filters_by_level():
    io_host = RecordingIoHost(level=IoMessageLevel.INFO)
    io_helper = as_io_helper(io_host)

    io_helper.emit(IO.HOTSWAP_I5400, "attempting")
    io_helper.info("hotswapping")
    io_helper.debug("details")
    io_helper.emit(IO.HOTSWAP_W5400, "drift")

    assert io_host.texts == ["hotswapping", "drift"]


def test_io_helper_tags_messages_with_action():
    io_host = RecordingIoHost()

    IoHelper(io_host, action="watch").info("hello")

    assert io_host.messages[0].action == "watch"
    assert IO.DEFAULT_INFO.matches(io_host.messages[0])


def test_as_io_helper_keeps_helpers():
    io_helper = IoHelper(RecordingIoHost())
    assert as_io_helper(io_helper) is io_helper


def test_logging_io_host(caplog):
    io_host = LoggingIoHost()

    with caplog.at_level(logging.DEBUG, logger="stackswap.io"):
        io_host.notify(IO.HOTSWAP_W5400.msg("drift ahead"))
        io_host.notify(IO.HOTSWAP_I5401.msg("plan"))
        io_host.notify(IO.DEFAULT_INFO.msg(""))

    assert [(r.levelno, r.getMessage()) for r in caplog.records] == [
        (logging.WARNING, "drift ahead"),
        (logging.DEBUG, "plan"),
    ]
