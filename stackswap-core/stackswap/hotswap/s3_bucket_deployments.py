import json
import logging
from typing import Any

from stackswap.cloudformation.evaluate import EvaluateCloudFormationTemplate
from stackswap.constants import (
    CDK_BUCKET_DEPLOYMENT_CFN_TYPE,
    IAM_POLICY_RESOURCE_TYPE,
    LAMBDA_FUNCTION_RESOURCE_TYPE,
)
from stackswap.exceptions import CfnEvaluationException, ToolkitError
from stackswap.hotswap.common import (
    AffectedResource,
    HotswapOperation,
    HotswappableChange,
    NonHotswappableReason,
    ResourceChange,
    non_hotswappable_change,
)
from stackswap.hotswap.registry import HotswapDetector, register_detector
from stackswap.utils.asyncio import run_sync
from stackswap.utils.strings import to_str

LOG = logging.getLogger(__name__)

# the handler validates that these fields of a CloudFormation custom resource request are present
REQUIRED_BY_CFN = "required-to-be-present-by-cfn"


def stringify_object(obj: Any) -> Any:
    """Turns every scalar of the given object into a string, the way CloudFormation passes resource properties."""
    if obj is None:
        return obj
    if isinstance(obj, list):
        return [stringify_object(item) for item in obj]
    if isinstance(obj, dict):
        return {key: stringify_object(value) for key, value in obj.items()}
    if isinstance(obj, bool):
        return "true" if obj else "false"
    return str(obj)


@register_detector(CDK_BUCKET_DEPLOYMENT_CFN_TYPE)
class S3BucketDeploymentDetector(HotswapDetector):
    """
    Hotswaps bucket deployment custom resources by invoking their handler function directly with the update
    request CloudFormation would send.
    """

    async def detect(self, logical_id, change, evaluate_cfn_template, hotswap_property_overrides):
        properties = dict(change.new_value.get("Properties") or {})
        # the ARN of the handler works just as well as its name when invoking it
        function_name = await evaluate_cfn_template.evaluate_cfn_expression(
            properties.pop("ServiceToken", None)
        )
        if not function_name:
            return [
                non_hotswappable_change(
                    change,
                    NonHotswappableReason.PROPERTIES,
                    f"could not determine the handler function of bucket deployment '{logical_id}'",
                )
            ]

        custom_resource_properties = await evaluate_cfn_template.evaluate_cfn_expression(
            properties
        )
        destination_bucket = custom_resource_properties.get("DestinationBucketName")

        async def _apply(sdk) -> None:
            payload = {
                "RequestType": "Update",
                "ResponseURL": REQUIRED_BY_CFN,
                "PhysicalResourceId": REQUIRED_BY_CFN,
                "StackId": REQUIRED_BY_CFN,
                "RequestId": REQUIRED_BY_CFN,
                "LogicalResourceId": REQUIRED_BY_CFN,
                "ResourceProperties": stringify_object(custom_resource_properties),
            }
            response = await sdk.lambda_.invoke(
                FunctionName=function_name,
                InvocationType="RequestResponse",
                Payload=json.dumps(payload),
            )
            if response.get("FunctionError"):
                details = ""
                if response.get("Payload") is not None:
                    details = to_str(await run_sync(response["Payload"].read))
                raise ToolkitError(
                    f"The bucket deployment handler {function_name} failed: "
                    f"{response['FunctionError']} {details}".strip()
                )

        return [
            HotswapOperation(
                service="custom-s3-deployment",
                change=HotswappableChange(
                    cause=change,
                    resources=[
                        AffectedResource(
                            logical_id=logical_id,
                            resource_type=CDK_BUCKET_DEPLOYMENT_CFN_TYPE,
                            physical_name=destination_bucket,
                            description=f"Contents of S3 Bucket '{destination_bucket}'",
                            metadata=evaluate_cfn_template.metadata_for(logical_id),
                        )
                    ],
                ),
                apply=_apply,
            )
        ]


async def skip_change_for_s3_deploy_custom_resource_policy(
    iam_policy_logical_id: str,
    change: ResourceChange,
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
) -> bool:
    """
    Returns True if the changed policy only grants permissions to the handler functions of bucket deployments.
    Such policies reference the deployed assets, so they change along with every asset, which does not matter
    for a hotswap of the bucket deployment itself.
    """
    role_refs = (change.new_value.get("Properties") or {}).get("Roles")
    # a policy without roles is not used by any function
    if not role_refs:
        return False

    for role_ref in role_refs:
        try:
            role_name = await evaluate_cfn_template.evaluate_cfn_expression(role_ref)
        except CfnEvaluationException as e:
            LOG.debug("Unable to evaluate role of policy %s: %s", iam_policy_logical_id, e)
            return False
        role_logical_id = await evaluate_cfn_template.find_logical_id_for_physical_name(role_name)
        # the role does not exist yet, or is not part of this stack
        if not role_logical_id:
            return False

        for role_user in evaluate_cfn_template.find_references_to(role_logical_id):
            if role_user.type == LAMBDA_FUNCTION_RESOURCE_TYPE:
                for function_user in evaluate_cfn_template.find_references_to(
                    role_user.logical_id
                ):
                    if function_user.type != CDK_BUCKET_DEPLOYMENT_CFN_TYPE:
                        return False
            elif role_user.type == IAM_POLICY_RESOURCE_TYPE:
                if role_user.logical_id != iam_policy_logical_id:
                    return False
            else:
                return False

    return True
