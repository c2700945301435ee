"""Hotswap deployments against AWS services mocked by moto."""

import asyncio
import json

import boto3
import pytest
from moto import mock_aws

from stackswap.aws.connect import SDK
from stackswap.cloudformation.evaluate import EvaluateCloudFormationTemplate
from stackswap.hotswap.common import HotswapMode
from stackswap.hotswap.deployment import try_hotswap
from stackswap.testing.config import TEST_AWS_ACCOUNT_ID, TEST_AWS_REGION_NAME

ROLE_ARN = f"arn:aws:iam::{TEST_AWS_ACCOUNT_ID}:role/state-machine-role"


def _definition(result: str) -> str:
    return json.dumps(
        {"StartAt": "Done", "States": {"Done": {"Type": "Pass", "Result": result, "End": True}}}
    )


def _template(result: str) -> dict:
    return {
        "Parameters": {"Stage": {"Type": "String", "Default": "dev"}},
        "Resources": {
            "Machine": {
                "Type": "AWS::StepFunctions::StateMachine",
                "Properties": {
                    "StateMachineName": {"Fn::Sub": "orders-${Stage}"},
                    "RoleArn": ROLE_ARN,
                    "DefinitionString": _definition(result),
                },
            }
        },
    }


@pytest.fixture
def aws():
    with mock_aws():
        yield


def test_state_machine_definition_is_updated(aws, io_host):
    stepfunctions = boto3.client("stepfunctions", region_name=TEST_AWS_REGION_NAME)
    state_machine_arn = stepfunctions.create_state_machine(
        name="orders-dev", definition=_definition("old"), roleArn=ROLE_ARN
    )["stateMachineArn"]

    sdk = SDK(region_name=TEST_AWS_REGION_NAME)
    desired = _template("new")
    evaluate = EvaluateCloudFormationTemplate(
        stack_name="test-stack",
        template=desired,
        parameters={},
        account=TEST_AWS_ACCOUNT_ID,
        region=TEST_AWS_REGION_NAME,
        partition="aws",
        sdk=sdk,
    )

    result = asyncio.run(
        try_hotswap(_template("old"), desired, evaluate, sdk, io_host, HotswapMode.FALL_BACK)
    )

    assert result.hotswapped
    [change] = result.hotswappable_changes
    assert change.resources[0].physical_name == "orders-dev"
    definition = stepfunctions.describe_state_machine(stateMachineArn=state_machine_arn)[
        "definition"
    ]
    assert json.loads(definition)["States"]["Done"]["Result"] == "new"
