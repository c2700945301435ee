import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from botocore.exceptions import ClientError

from stackswap.cloudformation.evaluate import LazyListStackResources
from stackswap.cloudformation.templates import load_template_file, parse_template
from stackswap.constants import CFN_STACK_RESOURCE_TYPE, METADATA_ASSET_PATH

if TYPE_CHECKING:
    from stackswap.aws.connect import SDK

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class NestedStackTemplates:
    """The deployed and the newly generated template of a nested stack, and of its own nested stacks."""

    physical_name: Optional[str]
    deployed_template: dict
    generated_template: dict
    nested_stack_templates: dict[str, "NestedStackTemplates"] = field(default_factory=dict)


@dataclass(frozen=True)
class RootTemplateWithNestedStacks:
    deployed_root_template: dict
    nested_stacks: dict[str, NestedStackTemplates]


def is_managed_nested_stack(resource: dict) -> bool:
    """Nested stacks whose template is part of the assembly carry the path of the template in their metadata."""
    return resource.get("Type") == CFN_STACK_RESOURCE_TYPE and bool(
        (resource.get("Metadata") or {}).get(METADATA_ASSET_PATH)
    )


def is_stack_not_found(error: ClientError) -> bool:
    message = error.response.get("Error", {}).get("Message", "")
    return message.startswith("Stack with id ") and message.endswith(" does not exist")


async def load_current_template(sdk: "SDK", stack_name: str) -> dict:
    """Returns the currently deployed template of the given stack, or an empty template if it does not exist."""
    try:
        response = await sdk.cloudformation.get_template(
            StackName=stack_name, TemplateStage="Original"
        )
    except ClientError as e:
        if is_stack_not_found(e):
            LOG.debug("Stack %s does not exist, using empty deployed template", stack_name)
            return {}
        raise
    return parse_template(response.get("TemplateBody"))


async def load_current_template_with_nested_stacks(
    stack_name: str, generated_template: dict, sdk: "SDK", assembly_dir: str
) -> RootTemplateWithNestedStacks:
    """
    Loads the deployed template of a stack, together with the deployed and generated templates of all its
    nested stacks (recursively).

    :param stack_name: the name of the deployed root stack
    :param generated_template: the newly generated template of the root stack
    :param sdk: the SDK used to fetch the deployed templates
    :param assembly_dir: the directory the nested stack template paths (``aws:asset:path``) are relative to
    """
    deployed_template = await load_current_template(sdk, stack_name)
    nested_stacks = await load_nested_stacks(
        sdk,
        assembly_dir,
        generated_template=generated_template,
        deployed_stack_name=stack_name,
    )
    return RootTemplateWithNestedStacks(
        deployed_root_template=deployed_template, nested_stacks=nested_stacks
    )


async def load_nested_stacks(
    sdk: "SDK",
    assembly_dir: str,
    generated_template: dict,
    deployed_stack_name: Optional[str],
) -> dict[str, NestedStackTemplates]:
    list_stack_resources = (
        LazyListStackResources(sdk, deployed_stack_name) if deployed_stack_name else None
    )
    nested_stacks = {}
    for logical_id, resource in (generated_template.get("Resources") or {}).items():
        if not is_managed_nested_stack(resource):
            continue

        asset_path = resource["Metadata"][METADATA_ASSET_PATH]
        nested_generated_template = load_template_file(os.path.join(assembly_dir, asset_path))

        nested_stack_arn = await get_nested_stack_arn(logical_id, list_stack_resources)
        # CloudFormation names nested stacks `<parent>-<logical id>-<suffix>`, which can only be looked up
        physical_name = nested_stack_arn.split("/")[1] if nested_stack_arn else None
        nested_deployed_template = (
            await load_current_template(sdk, physical_name) if physical_name else {}
        )

        nested_stacks[logical_id] = NestedStackTemplates(
            physical_name=physical_name,
            deployed_template=nested_deployed_template,
            generated_template=nested_generated_template,
            nested_stack_templates=await load_nested_stacks(
                sdk,
                assembly_dir,
                generated_template=nested_generated_template,
                deployed_stack_name=physical_name,
            ),
        )
    return nested_stacks


async def get_nested_stack_arn(
    logical_id: str, list_stack_resources: Optional[LazyListStackResources]
) -> Optional[str]:
    if not list_stack_resources:
        return None
    try:
        stack_resources = await list_stack_resources.list_stack_resources()
    except ClientError as e:
        if is_stack_not_found(e):
            return None
        raise
    for stack_resource in stack_resources:
        if stack_resource.get("LogicalResourceId") == logical_id:
            return stack_resource.get("PhysicalResourceId")
    return None
