"""
Builds the hotswap plan of a stack: every changed resource and output is classified into hotswap operations and
rejected changes, recursing into nested stacks.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from stackswap.cloudformation.diff import ResourceDifference, TemplateDiff, full_diff
from stackswap.cloudformation.evaluate import EvaluateCloudFormationTemplate
from stackswap.cloudformation.nested_stacks import NestedStackTemplates
from stackswap.constants import CFN_STACK_RESOURCE_TYPE
from stackswap.exceptions import CfnEvaluationException, NoHotswapDetector
from stackswap.hotswap.classifier import is_candidate_for_hotswapping
from stackswap.hotswap.common import (
    ClassifiedChange,
    HotswapOperation,
    HotswapPropertyOverrides,
    NonHotswappableChange,
    NonHotswappableReason,
    OutputSubject,
    RejectedChange,
    ResourceChange,
    ResourceSubject,
    non_hotswappable_change,
    non_hotswappable_resource,
)
from stackswap.hotswap.registry import load_detector

LOG = logging.getLogger(__name__)


@dataclass
class ClassifiedResourceChanges:
    hotswappable: list[HotswapOperation] = field(default_factory=list)
    non_hotswappable: list[RejectedChange] = field(default_factory=list)

    def add(self, result: ClassifiedChange) -> None:
        if result.hotswappable:
            self.hotswappable.append(result)
        else:
            self.non_hotswappable.append(result)

    def extend(self, other: "ClassifiedResourceChanges") -> None:
        self.hotswappable.extend(other.hotswappable)
        self.non_hotswappable.extend(other.non_hotswappable)


def changes_are_for_same_resource(
    removal: ResourceDifference, addition: ResourceDifference
) -> bool:
    return (
        removal.old_resource_type == addition.new_resource_type
        and removal.old_properties == addition.new_properties
    )


def make_rename_difference(
    removal: ResourceDifference, addition: ResourceDifference
) -> ResourceDifference:
    # the old value has to be filled in, otherwise the change would be classified as a creation
    return ResourceDifference(
        removal.old_value,
        addition.new_value,
        property_diffs=addition.property_diffs,
        other_diffs=addition.other_diffs,
    )


def get_stack_resource_differences(stack_changes: TemplateDiff) -> dict[str, ResourceDifference]:
    """
    Returns the changed resources of a stack. A renamed resource shows up as the removal of the old logical ID
    and the addition of an identical resource under the new one, such pairs are collapsed into one change.
    """
    all_changes = stack_changes.resources.changes
    removals = {logical_id: c for logical_id, c in all_changes.items() if c.is_removal}
    non_removals = {logical_id: c for logical_id, c in all_changes.items() if not c.is_removal}

    for logical_id, change in non_removals.items():
        if not change.is_addition:
            continue
        for removed_logical_id, removal in removals.items():
            if changes_are_for_same_resource(removal, change):
                LOG.debug("Resource %s was renamed to %s", removed_logical_id, logical_id)
                non_removals[logical_id] = make_rename_difference(removal, change)
                del removals[removed_logical_id]
                break

    return {**removals, **non_removals}


async def run_detector(
    logical_id: str,
    change: ResourceChange,
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
    hotswap_property_overrides: HotswapPropertyOverrides,
) -> list[ClassifiedChange]:
    try:
        detector = load_detector(change.resource_type)
    except NoHotswapDetector:
        return [non_hotswappable_resource(change)]

    try:
        return await detector.detect(
            logical_id, change, evaluate_cfn_template, hotswap_property_overrides
        )
    except CfnEvaluationException as e:
        LOG.debug("Unable to evaluate the change of resource %s: %s", logical_id, e)
        return [non_hotswappable_change(change, NonHotswappableReason.PROPERTIES, str(e))]


async def classify_resource_changes(
    stack_changes: TemplateDiff,
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
    sdk,
    nested_stack_names: dict[str, NestedStackTemplates],
    hotswap_property_overrides: HotswapPropertyOverrides,
) -> ClassifiedResourceChanges:
    """
    Classifies all changes of a stack (and its nested stacks) as either hotswappable or not.

    Resource changes that pass the candidate check are handed to the detector registered for their type, all
    detectors run concurrently. Errors raised by a detector, other than evaluation errors, abort the
    classification.

    :param stack_changes: the diff of the deployed and the desired template
    :param evaluate_cfn_template: the evaluation context of the stack
    :param sdk: the SDK used to look up nested stacks
    :param nested_stack_names: the nested stack templates, keyed by the logical ID of the nested stack resource
    :param hotswap_property_overrides: the user provided overrides passed on to the detectors
    :return: the hotswap operations and rejected changes
    """
    result = ClassifiedResourceChanges()

    for logical_id in stack_changes.outputs.changes:
        result.add(
            RejectedChange(
                change=NonHotswappableChange(
                    reason=NonHotswappableReason.OUTPUT,
                    description="output was changed",
                    subject=OutputSubject(
                        logical_id=logical_id,
                        metadata=evaluate_cfn_template.metadata_for(logical_id),
                    ),
                )
            )
        )

    detections = []
    for logical_id, change in get_stack_resource_differences(stack_changes).items():
        if (
            change.new_resource_type == CFN_STACK_RESOURCE_TYPE
            and change.old_resource_type == CFN_STACK_RESOURCE_TYPE
        ):
            result.extend(
                await find_nested_hotswappable_changes(
                    logical_id,
                    change,
                    nested_stack_names,
                    evaluate_cfn_template,
                    sdk,
                    hotswap_property_overrides,
                )
            )
            continue

        candidate = is_candidate_for_hotswapping(logical_id, change, evaluate_cfn_template)
        if isinstance(candidate, RejectedChange):
            result.add(candidate)
            continue

        detections.append(
            run_detector(logical_id, candidate, evaluate_cfn_template, hotswap_property_overrides)
        )

    for detection in await asyncio.gather(*detections):
        for classified_change in detection:
            result.add(classified_change)

    return result


async def find_nested_hotswappable_changes(
    logical_id: str,
    change: ResourceDifference,
    nested_stack_templates: dict[str, NestedStackTemplates],
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
    sdk,
    hotswap_property_overrides: HotswapPropertyOverrides,
) -> ClassifiedResourceChanges:
    nested_stack = (nested_stack_templates or {}).get(logical_id)
    if not nested_stack or not nested_stack.physical_name:
        return _reject_nested_stack(
            logical_id,
            NonHotswappableReason.NESTED_STACK_CREATION,
            "newly created nested stacks cannot be hotswapped",
            evaluate_cfn_template,
        )

    try:
        evaluate_nested_cfn_template = (
            await evaluate_cfn_template.create_nested_evaluate_cloud_formation_template(
                nested_stack.physical_name,
                nested_stack.generated_template,
                (change.new_properties or {}).get("Parameters"),
                nested_stacks=nested_stack.nested_stack_templates,
            )
        )
    except CfnEvaluationException as e:
        return _reject_nested_stack(
            logical_id, NonHotswappableReason.PROPERTIES, str(e), evaluate_cfn_template
        )
    nested_diff = full_diff(nested_stack.deployed_template, nested_stack.generated_template)

    return await classify_resource_changes(
        nested_diff,
        evaluate_nested_cfn_template,
        sdk,
        nested_stack.nested_stack_templates,
        hotswap_property_overrides,
    )


def _reject_nested_stack(
    logical_id: str,
    reason: NonHotswappableReason,
    description: str,
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
) -> ClassifiedResourceChanges:
    return ClassifiedResourceChanges(
        non_hotswappable=[
            RejectedChange(
                change=NonHotswappableChange(
                    reason=reason,
                    description=description,
                    subject=ResourceSubject(
                        logical_id=logical_id,
                        resource_type=CFN_STACK_RESOURCE_TYPE,
                        metadata=evaluate_cfn_template.metadata_for(logical_id),
                    ),
                )
            )
        ]
    )
