import asyncio

import pytest

from stackswap.cloudformation.diff import PropertyDifference
from stackswap.hotswap.common import (
    EcsHotswapProperties,
    HotswapOperation,
    HotswapPropertyOverrides,
    NonHotswappableReason,
    RejectedChange,
    ResourceChange,
)
from stackswap.hotswap.ecs_services import EcsTaskDefinitionDetector
from stackswap.utils.waiter import WaiterError

SERVICE_ARN = "arn:aws:ecs:us-east-1:123456789012:service/my-cluster/my-service"
TASK_DEFINITION_ARN = "arn:aws:ecs:us-east-1:123456789012:task-definition/my-family:3"


def _task_definition(image: str, **properties) -> dict:
    return {
        "Type": "AWS::ECS::TaskDefinition",
        "Properties": {
            "Family": "my-family",
            "Cpu": "256",
            "ContainerDefinitions": [
                {
                    "Name": "app",
                    "Image": image,
                    "DockerLabels": {"Team": "Platform"},
                    "LogConfiguration": {
                        "LogDriver": "awslogs",
                        "Options": {"awslogs-group": "my-group"},
                    },
                }
            ],
            **properties,
        },
    }


def _change(old: dict, new: dict) -> ResourceChange:
    old_properties, new_properties = old["Properties"], new["Properties"]
    updates = {}
    for name in {**old_properties, **new_properties}:
        diff = PropertyDifference(old_properties.get(name), new_properties.get(name))
        if diff.is_different:
            updates[name] = diff
    return ResourceChange("TaskDef", old, new, updates)


def _service() -> dict:
    return {"Type": "AWS::ECS::Service", "Properties": {"TaskDefinition": {"Ref": "TaskDef"}}}


def _detect(change, evaluate, overrides=None):
    return asyncio.run(
        EcsTaskDefinitionDetector().detect(
            "TaskDef", change, evaluate, overrides or HotswapPropertyOverrides()
        )
    )


def _stable_service(sdk):
    sdk.ecs.register_task_definition.return_value = {
        "taskDefinition": {"taskDefinitionArn": TASK_DEFINITION_ARN}
    }
    sdk.ecs.update_service.return_value = {
        "service": {"clusterArn": "arn:aws:ecs:us-east-1:123456789012:cluster/my-cluster"}
    }
    sdk.ecs.describe_services.return_value = {
        "services": [
            {"status": "ACTIVE", "deployments": [{}], "runningCount": 1, "desiredCount": 1}
        ],
        "failures": [],
    }


class TestEcsTaskDefinitionDetector:
    def test_container_definitions_change(self, create_evaluate, sdk):
        old, new = _task_definition("app:1"), _task_definition("app:2")
        evaluate = create_evaluate(
            {"Resources": {"TaskDef": new, "Service": _service()}},
            {"TaskDef": "my-family", "Service": SERVICE_ARN},
        )

        [operation] = _detect(_change(old, new), evaluate)

        assert isinstance(operation, HotswapOperation)
        assert operation.service == "ecs-service"
        assert [(r.logical_id, r.physical_name) for r in operation.change.resources] == [
            ("TaskDef", "my-family"),
            ("Service", "my-service"),
        ]

        _stable_service(sdk)
        asyncio.run(operation.apply(sdk))

        sdk.ecs.register_task_definition.assert_awaited_once_with(
            family="my-family",
            cpu="256",
            containerDefinitions=[
                {
                    "name": "app",
                    "image": "app:2",
                    "dockerLabels": {"Team": "Platform"},
                    "logConfiguration": {
                        "logDriver": "awslogs",
                        "options": {"awslogs-group": "my-group"},
                    },
                }
            ],
        )
        sdk.ecs.update_service.assert_awaited_once_with(
            service=SERVICE_ARN,
            taskDefinition=TASK_DEFINITION_ARN,
            cluster="my-cluster",
            forceNewDeployment=True,
            deploymentConfiguration={"minimumHealthyPercent": 0},
        )
        sdk.ecs.describe_services.assert_awaited_with(
            cluster="arn:aws:ecs:us-east-1:123456789012:cluster/my-cluster",
            services=[SERVICE_ARN],
        )

    def test_deployment_configuration_overrides(self, create_evaluate, sdk):
        old, new = _task_definition("app:1"), _task_definition("app:2")
        evaluate = create_evaluate(
            {"Resources": {"TaskDef": new, "Service": _service()}}, {"Service": SERVICE_ARN}
        )
        overrides = HotswapPropertyOverrides(
            EcsHotswapProperties(minimum_healthy_percent=50, maximum_healthy_percent=200)
        )

        [operation] = _detect(_change(old, new), evaluate, overrides)
        _stable_service(sdk)
        asyncio.run(operation.apply(sdk))

        assert sdk.ecs.update_service.await_args.kwargs["deploymentConfiguration"] == {
            "minimumHealthyPercent": 50,
            "maximumPercent": 200,
        }

    def test_family_from_task_definition_arn(self, create_evaluate, sdk):
        old = _task_definition("app:1")
        new = _task_definition("app:2")
        del old["Properties"]["Family"]
        del new["Properties"]["Family"]
        evaluate = create_evaluate(
            {"Resources": {"TaskDef": new, "Service": _service()}},
            {"TaskDef": TASK_DEFINITION_ARN, "Service": SERVICE_ARN},
        )

        [operation] = _detect(_change(old, new), evaluate)
        assert operation.change.resources[0].physical_name == "my-family"

    def test_no_services(self, create_evaluate):
        old, new = _task_definition("app:1"), _task_definition("app:2")
        evaluate = create_evaluate({"Resources": {"TaskDef": new}})

        result = _detect(_change(old, new), evaluate)

        rejected = [r for r in result if isinstance(r, RejectedChange)]
        assert len(rejected) == 1
        assert rejected[0].change.reason == NonHotswappableReason.DEPENDENCY_UNSUPPORTED
        assert rejected[0].change.description == (
            "No ECS services reference the changed task definition"
        )
        assert rejected[0].hotswap_only_visible is False
        # the new revision is still registered
        assert any(isinstance(r, HotswapOperation) for r in result)

    def test_service_not_deployed_yet(self, create_evaluate):
        old, new = _task_definition("app:1"), _task_definition("app:2")
        evaluate = create_evaluate(
            {"Resources": {"TaskDef": new, "Service": _service()}}, {"TaskDef": "my-family"}
        )

        result = _detect(_change(old, new), evaluate)

        [rejected] = [r for r in result if isinstance(r, RejectedChange)]
        assert rejected.change.reason == NonHotswappableReason.DEPENDENCY_UNSUPPORTED
        assert rejected.hotswap_only_visible is False
        [operation] = [r for r in result if isinstance(r, HotswapOperation)]
        assert [r.logical_id for r in operation.change.resources] == ["TaskDef"]

    def test_non_service_reference(self, create_evaluate):
        old, new = _task_definition("app:1"), _task_definition("app:2")
        rule = {
            "Type": "AWS::Events::Rule",
            "Properties": {"Targets": [{"EcsParameters": {"TaskDefinitionArn": {"Ref": "TaskDef"}}}]},
        }
        evaluate = create_evaluate(
            {"Resources": {"TaskDef": new, "Service": _service(), "Rule": rule}},
            {"Service": SERVICE_ARN},
        )

        result = _detect(_change(old, new), evaluate)

        [rejected] = [r for r in result if isinstance(r, RejectedChange)]
        assert rejected.hotswap_only_visible
        assert rejected.change.description == (
            "A resource 'Rule' with Type 'AWS::Events::Rule' that is not an ECS Service was found "
            "referencing the changed TaskDefinition 'TaskDef'"
        )

    def test_service_that_does_not_stabilize(self, create_evaluate, sdk):
        old, new = _task_definition("app:1"), _task_definition("app:2")
        evaluate = create_evaluate(
            {"Resources": {"TaskDef": new, "Service": _service()}}, {"Service": SERVICE_ARN}
        )
        [operation] = _detect(_change(old, new), evaluate)

        _stable_service(sdk)
        sdk.ecs.describe_services.return_value = {"services": [], "failures": [{"reason": "MISSING"}]}
        with pytest.raises(WaiterError) as e:
            asyncio.run(operation.apply(sdk))
        assert e.value.name == "FailureError"
