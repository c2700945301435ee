"""Async polling waiters for resources that settle after an update"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Awaitable, Callable, Optional

import botocore.session
from botocore.exceptions import ClientError
from botocore.waiter import SingleWaiterConfig

LOG = logging.getLogger(__name__)


class WaiterState(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    RETRY = "RETRY"
    TIMEOUT = "TIMEOUT"
    ABORTED = "ABORTED"


@dataclass
class WaiterResult:
    state: WaiterState
    reason: Optional[str] = None
    observed_responses: Counter = field(default_factory=Counter)


class WaiterError(Exception):
    """Raised when a waiter ends in any state but SUCCESS. ``name`` distinguishes timeouts from aborts."""

    name: str
    result: WaiterResult

    def __init__(self, name: str, result: WaiterResult):
        self.name = name
        self.result = result
        super().__init__(f"{name}: {result.state.value}{f' - {result.reason}' if result.reason else ''}")


# the result of a single poll: the new state and a short description of the observed response
PollResult = tuple[WaiterState, str]


async def wait_until_ready(
    check: Callable[[], Awaitable[PollResult]],
    max_wait: float,
    delay: float,
    abort_event: Optional[asyncio.Event] = None,
) -> WaiterResult:
    """
    Polls ``check`` every ``delay`` seconds until it returns SUCCESS or FAILURE, ``max_wait`` seconds have
    passed, or the optional ``abort_event`` is set.

    Every observed response is tallied in the result, which is used to explain timeouts to the user.

    :raises WaiterError: with name ``TimeoutError``, ``AbortError`` or ``FailureError``
    :return: the successful waiter result
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_wait
    observed = Counter()

    while True:
        if abort_event and abort_event.is_set():
            raise WaiterError(
                "AbortError",
                WaiterResult(WaiterState.ABORTED, "Request was aborted", observed),
            )

        state, response = await check()
        observed[response] += 1

        if state == WaiterState.SUCCESS:
            return WaiterResult(state, observed_responses=observed)
        if state == WaiterState.FAILURE:
            raise WaiterError("FailureError", WaiterResult(state, response, observed))

        if loop.time() + delay > deadline:
            raise WaiterError(
                "TimeoutError",
                WaiterResult(
                    WaiterState.TIMEOUT,
                    f"Waiter has timed out after {max_wait} seconds",
                    observed,
                ),
            )
        LOG.debug("Resource not ready yet (%s), checking again in %s seconds", response, delay)
        await asyncio.sleep(delay)


def format_waiter_summary(result: WaiterResult) -> str:
    """
    Renders a waiter result for the user, e.g.::

        Resource is not in the expected state due to waiter status: TIMEOUT. Waiter has timed out after 1 seconds. Observed responses:
          - InProgress (3)
    """
    message = f"Resource is not in the expected state due to waiter status: {result.state.value}."
    if result.reason:
        message += f" {result.reason}."
    if result.observed_responses:
        message += " Observed responses:"
        for response, count in result.observed_responses.items():
            message += f"\n  - {response} ({count})"
    return message


@lru_cache()
def load_waiter_config(service_name: str, waiter_name: str) -> SingleWaiterConfig:
    """Loads the definition of a waiter (e.g. ``ServicesStable`` of ``ecs``) from the botocore service models."""
    return botocore.session.get_session().get_waiter_model(service_name).get_waiter(waiter_name)


def sdk_waiter_check(
    service_name: str,
    waiter_name: str,
    operation: Callable[..., Awaitable[dict]],
    describe: Callable[[dict], str],
    **kwargs,
) -> Callable[[], Awaitable[PollResult]]:
    """
    Creates a check for ``wait_until_ready`` which evaluates the acceptors of a botocore waiter against the
    response of ``operation(**kwargs)``, the way ``client.get_waiter(waiter_name).wait(**kwargs)`` would.

    :param operation: the async API call the waiter polls, e.g. ``sdk.ecs.describe_services``
    :param describe: renders a response as the short description tallied by the waiter
    """
    acceptors = load_waiter_config(service_name, waiter_name).acceptors

    async def _check() -> PollResult:
        try:
            response: dict[str, Any] = await operation(**kwargs)
        except ClientError as e:
            response = e.response

        for acceptor in acceptors:
            if acceptor.matcher_func(response):
                return WaiterState(acceptor.state.upper()), describe(response)

        # errors without a matching acceptor end the waiter
        if "Error" in response:
            error = response["Error"]
            reason = f"{error.get('Code', 'Unknown')}: {error.get('Message', 'Unknown')}"
            return WaiterState.FAILURE, reason
        return WaiterState.RETRY, describe(response)

    return _check
