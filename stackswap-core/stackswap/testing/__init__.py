from stackswap.testing.io_host import RecordingIoHost
from stackswap.testing.sdk import MockSdk

__all__ = ["MockSdk", "RecordingIoHost"]
