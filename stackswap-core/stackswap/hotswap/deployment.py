"""
Entry points of a hotswap deployment: short-circuits CloudFormation by updating the deployed resources directly,
whenever all (or, in hotswap-only mode, some) of the changes of a stack allow it.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from stackswap.cloudformation.diff import full_diff
from stackswap.cloudformation.evaluate import EvaluateCloudFormationTemplate
from stackswap.cloudformation.nested_stacks import (
    NestedStackTemplates,
    load_current_template_with_nested_stacks,
)
from stackswap.hotswap.changes import classify_resource_changes
from stackswap.hotswap.common import HotswapMode, HotswapPropertyOverrides, HotswapResult
from stackswap.hotswap.executor import apply_all_hotswap_operations
from stackswap.hotswap.reporting import log_rejected_changes
from stackswap.io import IO, IoHost, as_io_helper

LOG = logging.getLogger(__name__)

HOTSWAP_DRIFT_DISCLOSURE = (
    "⚠️ The --hotswap and --hotswap-fallback flags deliberately introduce CloudFormation drift "
    "to speed up deployments\n"
    "⚠️ They should only be used for development - never use them for your production Stacks!"
)


@dataclass
class DeployStackResult:
    stack_arn: str
    no_op: bool
    outputs: dict[str, str] = field(default_factory=dict)
    type: Literal["did-deploy-stack"] = "did-deploy-stack"


async def try_hotswap(
    current_template: dict,
    desired_template: dict,
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
    sdk,
    io_host: IoHost,
    mode: HotswapMode,
    hotswap_property_overrides: Optional[HotswapPropertyOverrides] = None,
    nested_stacks: Optional[dict[str, NestedStackTemplates]] = None,
) -> HotswapResult:
    """
    Classifies the changes between the deployed and the desired template, and applies the hotswappable ones.

    In fall-back mode nothing is applied as soon as a single change cannot be hotswapped, and the result is
    marked as not hotswapped so that a full deployment can follow. In hotswap-only mode the hotswappable changes
    are applied regardless, and the others are only reported.

    :param current_template: the currently deployed template of the stack
    :param desired_template: the template to deploy
    :param evaluate_cfn_template: the evaluation context of the stack
    :param sdk: the SDK used by the hotswap operations
    :param io_host: the host receiving all progress messages
    :param mode: the hotswap mode
    :param hotswap_property_overrides: overrides of the properties used by the hotswap operations
    :param nested_stacks: the templates of the nested stacks, keyed by the logical ID of the nested stack
    :return: the result of the hotswap deployment
    """
    io_helper = as_io_helper(io_host)
    hotswap_property_overrides = hotswap_property_overrides or HotswapPropertyOverrides()
    start = time.perf_counter()

    io_helper.emit(IO.HOTSWAP_I5400, f"Attempting a hotswap deployment in {mode.value} mode", mode)

    if mode == HotswapMode.FULL_DEPLOYMENT:
        result = HotswapResult(mode=mode, hotswapped=False)
        _notify_result(io_helper, result, start)
        return result

    stack_changes = full_diff(current_template, desired_template)
    classified = await classify_resource_changes(
        stack_changes,
        evaluate_cfn_template,
        sdk,
        nested_stacks or {},
        hotswap_property_overrides,
    )

    log_rejected_changes(io_helper, classified.non_hotswappable, mode)

    hotswappable_changes = [operation.change for operation in classified.hotswappable]
    non_hotswappable_changes = [rejected.change for rejected in classified.non_hotswappable]
    result = HotswapResult(
        mode=mode,
        hotswapped=False,
        hotswappable_changes=hotswappable_changes,
        non_hotswappable_changes=non_hotswappable_changes,
    )
    io_helper.emit(IO.HOTSWAP_I5401, "Hotswap plan created", result)

    # in fall-back mode, any change that cannot be hotswapped requires a full deployment
    if mode == HotswapMode.FALL_BACK and non_hotswappable_changes:
        _notify_result(io_helper, result, start)
        return result

    await apply_all_hotswap_operations(sdk, io_helper, classified.hotswappable)

    result.hotswapped = True
    _notify_result(io_helper, result, start)
    return result


def _notify_result(io_helper, result: HotswapResult, start: float) -> None:
    duration = time.perf_counter() - start
    if result.hotswapped:
        message = f"Hotswap deployment finished in {duration:.2f}s"
    else:
        message = f"Hotswap deployment not performed, a full deployment is required ({duration:.2f}s)"
    io_helper.emit(IO.HOTSWAP_I5410, message, result)


async def try_hotswap_deployment(
    sdk,
    io_host: IoHost,
    stack_name: str,
    generated_template: dict,
    assembly_dir: str,
    mode: HotswapMode,
    parameters: Optional[dict[str, Any]] = None,
    hotswap_property_overrides: Optional[HotswapPropertyOverrides] = None,
) -> Optional[DeployStackResult]:
    """
    Performs a hotswap deployment of a deployed stack, short-circuiting CloudFormation if possible.

    :param sdk: the SDK to look up the deployed stack and to hotswap its resources with
    :param io_host: the host receiving all progress messages
    :param stack_name: the name of the deployed stack
    :param generated_template: the newly generated template of the stack
    :param assembly_dir: the directory the templates of nested stacks are loaded from
    :param mode: the hotswap mode
    :param parameters: the values of the template parameters, e.g. asset locations
    :param hotswap_property_overrides: overrides of the properties used by the hotswap operations
    :return: the result of the deployment, or None if the stack has to be deployed with CloudFormation
    """
    io_helper = as_io_helper(io_host)
    if mode != HotswapMode.FULL_DEPLOYMENT:
        io_helper.emit(IO.HOTSWAP_W5400, HOTSWAP_DRIFT_DISCLOSURE)

    account = await sdk.current_account()
    current_template = await load_current_template_with_nested_stacks(
        stack_name, generated_template, sdk, assembly_dir
    )

    evaluate_cfn_template = EvaluateCloudFormationTemplate(
        stack_name=stack_name,
        template=generated_template,
        parameters=parameters or {},
        account=account.account_id,
        region=sdk.region_name,
        partition=account.partition,
        sdk=sdk,
        nested_stacks=current_template.nested_stacks,
    )

    result = await try_hotswap(
        current_template.deployed_root_template,
        generated_template,
        evaluate_cfn_template,
        sdk,
        io_helper,
        mode,
        hotswap_property_overrides=hotswap_property_overrides,
        nested_stacks=current_template.nested_stacks,
    )
    if not result.hotswapped:
        return None

    response = await sdk.cloudformation.describe_stacks(StackName=stack_name)
    stack = response["Stacks"][0]
    return DeployStackResult(
        stack_arn=stack["StackId"],
        no_op=not result.hotswappable_changes,
        outputs={
            output["OutputKey"]: output.get("OutputValue")
            for output in stack.get("Outputs", [])
        },
    )
