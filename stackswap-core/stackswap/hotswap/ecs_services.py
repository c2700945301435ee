import asyncio
import logging
from typing import Optional

from stackswap import config
from stackswap.cloudformation.evaluate import EvaluateCloudFormationTemplate
from stackswap.constants import ECS_SERVICE_RESOURCE_TYPE
from stackswap.hotswap.common import (
    AffectedResource,
    EcsHotswapProperties,
    HotswapOperation,
    HotswappableChange,
    NonHotswappableReason,
    ResourceChange,
    classify_changes,
    non_hotswappable_change,
)
from stackswap.hotswap.registry import HotswapDetector, register_detector
from stackswap.utils.objects import transform_object_keys
from stackswap.utils.strings import first_char_to_lower
from stackswap.utils.waiter import sdk_waiter_check, wait_until_ready

LOG = logging.getLogger(__name__)

# user-defined maps whose keys are sent as given in the template
TASK_DEFINITION_KEEP_CASE = {
    "ContainerDefinitions": {
        "DockerLabels": True,
        "FirelensConfiguration": {"Options": True},
        "LogConfiguration": {"Options": True},
    },
    "Volumes": {
        "DockerVolumeConfiguration": {
            "DriverOpts": True,
            "Labels": True,
        },
    },
}


async def prepare_task_definition_change(
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
    logical_id: str,
    change: ResourceChange,
) -> Optional[dict]:
    """
    Evaluates the task definition to register: the deployed definition with the new container definitions.
    Returns None if the family of the task definition cannot be determined.
    """
    task_definition_resource = {
        **(change.old_value.get("Properties") or {}),
        "ContainerDefinitions": (change.new_value.get("Properties") or {}).get(
            "ContainerDefinitions"
        ),
    }
    family = await evaluate_cfn_template.establish_resource_physical_name(
        logical_id, task_definition_resource.get("Family")
    )
    if not family:
        return None

    # the physical name of a task definition is its ARN:
    # arn:<partition>:ecs:<region>:<account>:task-definition/<family>:<revision>
    family_parts = family.split(":")
    if len(family_parts) > 1:
        family = family_parts[5].split("/")[1]

    task_definition_resource.pop("Family", None)
    evaluated = await evaluate_cfn_template.evaluate_cfn_expression(task_definition_resource)
    evaluated["Family"] = family
    return evaluated


def describe_services_response(response: dict) -> str:
    failures = response.get("failures") or []
    if failures:
        return failures[0].get("reason") or "failure"
    services = response.get("services") or []
    if not services:
        return "no services"
    service = services[0]
    return (
        f"{service.get('status')}: {service.get('runningCount')}/{service.get('desiredCount')} tasks "
        f"running, {len(service.get('deployments', []))} deployments"
    )


async def wait_for_service_to_be_stable(ecs, cluster: str, service_arn: str) -> None:
    check = sdk_waiter_check(
        "ecs",
        "ServicesStable",
        ecs.describe_services,
        describe_services_response,
        cluster=cluster,
        services=[service_arn],
    )
    await wait_until_ready(
        check,
        max_wait=config.HOTSWAP_ECS_STABILIZATION_MAX_WAIT,
        delay=config.HOTSWAP_WAITER_DELAY,
    )


@register_detector("AWS::ECS::TaskDefinition")
class EcsTaskDefinitionDetector(HotswapDetector):
    """
    Hotswaps the container definitions of ECS task definitions by registering a new revision of the task
    definition, and redeploying all ECS services that use it.
    """

    async def detect(self, logical_id, change, evaluate_cfn_template, hotswap_property_overrides):
        ret = []
        classified_changes = classify_changes(change, ["ContainerDefinitions"])
        classified_changes.report_non_hotswappable_property_changes(ret)

        resources_referencing_task_def = evaluate_cfn_template.find_references_to(logical_id)
        ecs_services = [
            r for r in resources_referencing_task_def if r.type == ECS_SERVICE_RESOURCE_TYPE
        ]
        ecs_service_arns = []
        for service in ecs_services:
            arn = await evaluate_cfn_template.find_physical_name_for(service.logical_id)
            if arn:
                ecs_service_arns.append((service.logical_id, arn))

        if not ecs_service_arns:
            ret.append(
                non_hotswappable_change(
                    change,
                    NonHotswappableReason.DEPENDENCY_UNSUPPORTED,
                    "No ECS services reference the changed task definition",
                    hotswap_only_visible=False,
                )
            )
        for resource in resources_referencing_task_def:
            if resource.type != ECS_SERVICE_RESOURCE_TYPE:
                ret.append(
                    non_hotswappable_change(
                        change,
                        NonHotswappableReason.DEPENDENCY_UNSUPPORTED,
                        f"A resource '{resource.logical_id}' with Type '{resource.type}' that is not an "
                        f"ECS Service was found referencing the changed TaskDefinition '{logical_id}'",
                    )
                )

        if not classified_changes.names_of_hotswappable_props:
            return ret

        task_definition = await prepare_task_definition_change(
            evaluate_cfn_template, logical_id, change
        )
        if task_definition is None:
            ret.append(
                non_hotswappable_change(
                    change,
                    NonHotswappableReason.PROPERTIES,
                    f"could not determine the family of task definition '{logical_id}'",
                    classified_changes.hotswappable_props,
                )
            )
            return ret

        family = task_definition["Family"]
        ecs_properties = (
            hotswap_property_overrides.ecs_hotswap_properties
            if hotswap_property_overrides and hotswap_property_overrides.ecs_hotswap_properties
            else EcsHotswapProperties()
        )

        async def _apply(sdk) -> None:
            ecs = sdk.ecs
            register_response = await ecs.register_task_definition(
                **transform_object_keys(
                    task_definition, first_char_to_lower, TASK_DEFINITION_KEEP_CASE
                )
            )
            task_definition_arn = register_response["taskDefinition"]["taskDefinitionArn"]

            deployment_configuration = {
                "minimumHealthyPercent": ecs_properties.minimum_healthy_percent,
            }
            if ecs_properties.maximum_healthy_percent is not None:
                deployment_configuration["maximumPercent"] = ecs_properties.maximum_healthy_percent

            async def _update_service(service_arn: str) -> None:
                # arn:<partition>:ecs:<region>:<account>:service/<cluster>/<service>
                response = await ecs.update_service(
                    service=service_arn,
                    taskDefinition=task_definition_arn,
                    cluster=service_arn.split("/")[1],
                    forceNewDeployment=True,
                    deploymentConfiguration=deployment_configuration,
                )
                await wait_for_service_to_be_stable(
                    ecs, response["service"]["clusterArn"], service_arn
                )

            await asyncio.gather(*(_update_service(arn) for _, arn in ecs_service_arns))

        ret.append(
            HotswapOperation(
                service="ecs-service",
                change=HotswappableChange(
                    cause=change,
                    resources=[
                        AffectedResource(
                            logical_id=logical_id,
                            resource_type=change.resource_type,
                            physical_name=family,
                            metadata=evaluate_cfn_template.metadata_for(logical_id),
                        ),
                        *(
                            AffectedResource(
                                logical_id=service_logical_id,
                                resource_type=ECS_SERVICE_RESOURCE_TYPE,
                                physical_name=arn.split("/")[2],
                                metadata=evaluate_cfn_template.metadata_for(service_logical_id),
                            )
                            for service_logical_id, arn in ecs_service_arns
                        ),
                    ],
                ),
                apply=_apply,
            )
        )
        return ret
