import pytest

from stackswap import config
from stackswap.cloudformation.evaluate import EvaluateCloudFormationTemplate
from stackswap.testing import MockSdk, RecordingIoHost
from stackswap.testing.config import (
    TEST_AWS_ACCESS_KEY_ID,
    TEST_AWS_ACCOUNT_ID,
    TEST_AWS_REGION_NAME,
    TEST_AWS_SECRET_ACCESS_KEY,
)


@pytest.fixture(autouse=True)
def set_boto_test_credentials_and_region(monkeypatch):
    """
    Automatically sets the default credentials and region for all unit tests.
    """
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", TEST_AWS_ACCESS_KEY_ID)
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", TEST_AWS_SECRET_ACCESS_KEY)
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_AWS_REGION_NAME)


@pytest.fixture(autouse=True)
def fast_waiters(monkeypatch):
    """Polls waiters without delay, so that tests don't sleep."""
    monkeypatch.setattr(config, "HOTSWAP_WAITER_DELAY", 0)


@pytest.fixture
def sdk() -> MockSdk:
    return MockSdk()


@pytest.fixture
def io_host() -> RecordingIoHost:
    return RecordingIoHost()


@pytest.fixture
def create_evaluate(sdk):
    """
    Factory for evaluation contexts of the stack ``test-stack``, backed by the mock SDK. ``stack_resources`` maps
    logical IDs to the physical IDs of the deployed resources (or to ``(physical ID, resource type)``).
    """

    def _create(template: dict, stack_resources: dict = None, parameters: dict = None, **kwargs):
        summaries = []
        for logical_id, physical in (stack_resources or {}).items():
            physical_id, resource_type = physical if isinstance(physical, tuple) else (physical, None)
            if resource_type is None:
                resource_type = (
                    template.get("Resources", {}).get(logical_id, {}).get("Type", "AWS::S3::Bucket")
                )
            summaries.append(
                {
                    "LogicalResourceId": logical_id,
                    "PhysicalResourceId": physical_id,
                    "ResourceType": resource_type,
                }
            )
        sdk.cloudformation.list_stack_resources.return_value = {
            "StackResourceSummaries": summaries
        }
        return EvaluateCloudFormationTemplate(
            stack_name="test-stack",
            template=template,
            parameters=parameters or {},
            account=TEST_AWS_ACCOUNT_ID,
            region=TEST_AWS_REGION_NAME,
            partition="aws",
            sdk=sdk,
            **kwargs,
        )

    return _create
