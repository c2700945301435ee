from stackswap.constants import IAM_POLICY_RESOURCE_TYPE
from stackswap.hotswap.common import non_hotswappable_resource
from stackswap.hotswap.registry import HotswapDetector, register_detector
from stackswap.hotswap.s3_bucket_deployments import (
    skip_change_for_s3_deploy_custom_resource_policy,
)


@register_detector(IAM_POLICY_RESOURCE_TYPE)
class IamPolicyDetector(HotswapDetector):
    async def detect(self, logical_id, change, evaluate_cfn_template, hotswap_property_overrides):
        # policies of bucket deployment handlers change with every asset, and can be ignored
        if await skip_change_for_s3_deploy_custom_resource_policy(
            logical_id, change, evaluate_cfn_template
        ):
            return []

        return [non_hotswappable_resource(change)]
