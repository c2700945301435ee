import asyncio

import pytest

from stackswap.exceptions import ToolkitError
from stackswap.hotswap.common import (
    AffectedResource,
    HotswapOperation,
    HotswappableChange,
    ResourceChange,
)
from stackswap.hotswap.executor import apply_all_hotswap_operations
from stackswap.io import IO, as_io_helper
from stackswap.utils.waiter import WaiterError, WaiterResult, WaiterState


def _operation(apply, logical_id="Function", service="lambda", physical_name="my-fn"):
    cause = ResourceChange(
        logical_id,
        {"Type": "AWS::Lambda::Function"},
        {"Type": "AWS::Lambda::Function"},
        {},
    )
    return HotswapOperation(
        service=service,
        change=HotswappableChange(
            cause=cause,
            resources=[
                AffectedResource(
                    logical_id=logical_id,
                    resource_type="AWS::Lambda::Function",
                    physical_name=physical_name,
                )
            ],
        ),
        apply=apply,
    )


def _run(sdk, io_host, operations, max_concurrency=None):
    asyncio.run(
        apply_all_hotswap_operations(sdk, as_io_helper(io_host), operations, max_concurrency)
    )


class TestApplyAllHotswapOperations:
    def test_no_operations(self, sdk, io_host):
        _run(sdk, io_host, [])
        assert io_host.messages == []

    def test_progress_messages(self, sdk, io_host):
        async def _apply(_sdk):
            pass

        _run(sdk, io_host, [_operation(_apply)])

        assert io_host.texts[0] == "\n✨ hotswapping resources:"
        [started] = io_host.with_code(IO.HOTSWAP_I5402)
        [finished] = io_host.with_code(IO.HOTSWAP_I5403)
        assert started.message == "   ✨ AWS::Lambda::Function 'my-fn'"
        assert finished.message == "   ✨ AWS::Lambda::Function 'my-fn' hotswapped!"
        assert finished.data.cause.logical_id == "Function"

    def test_user_agent_marker(self, sdk, io_host):
        markers_during_apply = []

        async def _apply(_sdk):
            markers_during_apply.extend(_sdk.user_agent_markers)

        _run(sdk, io_host, [_operation(_apply, service="ecs-service")])

        assert markers_during_apply == ["stackswap-hotswap/success-ecs-service"]
        assert sdk.user_agent_markers == []

    def test_user_agent_marker_is_removed_on_failure(self, sdk, io_host):
        async def _apply(_sdk):
            raise ValueError("failed")

        with pytest.raises(ValueError):
            _run(sdk, io_host, [_operation(_apply)])

        assert sdk.user_agent_history == ["stackswap-hotswap/success-lambda"]
        assert sdk.user_agent_markers == []
        assert io_host.with_code(IO.HOTSWAP_I5403) == []

    def test_concurrency_is_bounded(self, sdk, io_host):
        in_flight = 0
        max_in_flight = 0
        applied = []

        def _apply_factory(index):
            async def _apply(_sdk):
                nonlocal in_flight, max_in_flight
                in_flight += 1
                max_in_flight = max(max_in_flight, in_flight)
                await asyncio.sleep(0.001)
                in_flight -= 1
                applied.append(index)

            return _apply

        operations = [_operation(_apply_factory(i), logical_id=f"F{i}") for i in range(25)]
        _run(sdk, io_host, operations, max_concurrency=10)

        assert max_in_flight == 10
        assert sorted(applied) == list(range(25))
        assert len(io_host.with_code(IO.HOTSWAP_I5403)) == 25

    def test_no_operations_are_started_after_failure(self, sdk, io_host):
        started = []

        def _apply_factory(index):
            async def _apply(_sdk):
                started.append(index)
                await asyncio.sleep(0)
                if index == 0:
                    raise ValueError("first operation failed")

            return _apply

        operations = [_operation(_apply_factory(i), logical_id=f"F{i}") for i in range(5)]
        with pytest.raises(ValueError, match="first operation failed"):
            _run(sdk, io_host, operations, max_concurrency=2)

        assert started == [0, 1]

    def test_waiter_timeout_is_summarized(self, sdk, io_host):
        async def _apply(_sdk):
            result = WaiterResult(WaiterState.TIMEOUT, "Waiter has timed out after 1 seconds")
            result.observed_responses["InProgress"] = 3
            raise WaiterError("TimeoutError", result)

        with pytest.raises(ToolkitError) as e:
            _run(sdk, io_host, [_operation(_apply)])

        assert e.value.name == "TimeoutError"
        assert str(e.value) == (
            "Resource is not in the expected state due to waiter status: TIMEOUT. "
            "Waiter has timed out after 1 seconds. Observed responses:\n  - InProgress (3)"
        )
        assert isinstance(e.value.__cause__, WaiterError)

    def test_waiter_failure_is_raised_unchanged(self, sdk, io_host):
        error = WaiterError("FailureError", WaiterResult(WaiterState.FAILURE, "Failed: bad zip"))

        async def _apply(_sdk):
            raise error

        with pytest.raises(WaiterError) as e:
            _run(sdk, io_host, [_operation(_apply)])

        assert e.value is error
