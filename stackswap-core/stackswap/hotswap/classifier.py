from typing import Union

from stackswap.cloudformation.diff import ResourceDifference
from stackswap.cloudformation.evaluate import EvaluateCloudFormationTemplate
from stackswap.hotswap.common import (
    NonHotswappableChange,
    NonHotswappableReason,
    RejectedChange,
    ResourceChange,
    ResourceSubject,
)


def _reject(
    logical_id: str,
    resource_type: str,
    reason: NonHotswappableReason,
    description: str,
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
) -> RejectedChange:
    return RejectedChange(
        change=NonHotswappableChange(
            reason=reason,
            description=description,
            subject=ResourceSubject(
                logical_id=logical_id,
                resource_type=resource_type,
                metadata=evaluate_cfn_template.metadata_for(logical_id),
            ),
        )
    )


def is_candidate_for_hotswapping(
    logical_id: str,
    change: ResourceDifference,
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
) -> Union[RejectedChange, ResourceChange]:
    """
    Decides whether a resource difference can be handed to a detector. Created, deleted and re-typed
    resources can never be hotswapped and are rejected right away.

    :return: the rejection, or the resource change to be classified by the detector of its type
    """
    if not change.old_value:
        return _reject(
            logical_id,
            change.new_resource_type,
            NonHotswappableReason.RESOURCE_CREATION,
            f"resource '{logical_id}' was created by this deployment",
            evaluate_cfn_template,
        )
    if not change.new_value:
        return _reject(
            logical_id,
            change.old_resource_type,
            NonHotswappableReason.RESOURCE_DELETION,
            f"resource '{logical_id}' was destroyed by this deployment",
            evaluate_cfn_template,
        )

    if change.new_resource_type != change.old_resource_type:
        return _reject(
            logical_id,
            change.new_resource_type,
            NonHotswappableReason.RESOURCE_TYPE_CHANGED,
            f"resource '{logical_id}' had its type changed from "
            f"'{change.old_resource_type}' to '{change.new_resource_type}'",
            evaluate_cfn_template,
        )

    return ResourceChange(
        logical_id=logical_id,
        old_value=change.old_value,
        new_value=change.new_value,
        property_updates=change.property_updates,
        metadata=evaluate_cfn_template.metadata_for(logical_id),
    )
