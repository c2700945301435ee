import logging
from typing import Optional

from stackswap import config
from stackswap.constants import HOTSWAP_USER_AGENT_PREFIX
from stackswap.exceptions import ToolkitError
from stackswap.hotswap.common import ICON, HotswapOperation
from stackswap.io import IO, IoHelper
from stackswap.utils.asyncio import run_bounded
from stackswap.utils.waiter import WaiterError, format_waiter_summary

LOG = logging.getLogger(__name__)

# waiter errors that are reported with a summary of the responses observed while waiting
SUMMARIZED_WAITER_ERRORS = ("TimeoutError", "AbortError")


async def apply_all_hotswap_operations(
    sdk,
    io_helper: IoHelper,
    operations: list[HotswapOperation],
    max_concurrency: Optional[int] = None,
) -> None:
    """
    Applies the given hotswap operations, running at most ``max_concurrency`` of them at the same time. The
    operations are started in the given order. After the first failure no further operations are started, the
    ones already running are awaited, and the failure is raised.
    """
    if not operations:
        return

    io_helper.info(f"\n{ICON} hotswapping resources:")
    await run_bounded(
        [lambda op=operation: apply_hotswap_operation(sdk, io_helper, op) for operation in operations],
        max_concurrency or config.HOTSWAP_MAX_CONCURRENCY,
    )


async def apply_hotswap_operation(sdk, io_helper: IoHelper, operation: HotswapOperation) -> None:
    # note the type of service that was hotswapped in the user agent of the SDK calls
    custom_user_agent = f"{HOTSWAP_USER_AGENT_PREFIX}/success-{operation.service}"
    sdk.append_custom_user_agent(custom_user_agent)
    try:
        io_helper.emit(
            IO.HOTSWAP_I5402,
            "\n".join(f"   {ICON} {r.text}" for r in operation.change.resources),
            operation.change,
        )

        try:
            await operation.apply(sdk)
        except WaiterError as e:
            if e.name in SUMMARIZED_WAITER_ERRORS:
                raise ToolkitError(format_waiter_summary(e.result), name=e.name) from e
            raise
        except Exception:
            if config.HOTSWAP_VERBOSE_ERRORS:
                LOG.exception("Hotswap operation for service %s failed", operation.service)
            raise

        io_helper.emit(
            IO.HOTSWAP_I5403,
            "\n".join(f"   {ICON} {r.text} hotswapped!" for r in operation.change.resources),
            operation.change,
        )
    finally:
        sdk.remove_custom_user_agent(custom_user_agent)
