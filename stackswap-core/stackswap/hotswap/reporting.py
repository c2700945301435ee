from stackswap.hotswap.common import (
    HotswapMode,
    NonHotswappableChange,
    OutputSubject,
    RejectedChange,
    ResourceSubject,
)
from stackswap.io import IoHelper

WARNING_ICON = "⚠️"

HOTSWAP_ONLY_BANNER = (
    f"{WARNING_ICON} The following non-hotswappable changes were found. "
    "To reconcile these using CloudFormation, specify --hotswap-fallback"
)
FALL_BACK_BANNER = f"{WARNING_ICON} The following non-hotswappable changes were found:"


def non_hotswappable_change_message(change: NonHotswappableChange) -> str:
    subject = change.subject
    reason = change.description or change.reason.value

    if isinstance(subject, OutputSubject):
        return f"output: {subject.logical_id}, reason: {reason}"
    return non_hotswappable_resource_message(subject, reason)


def non_hotswappable_resource_message(subject: ResourceSubject, reason: str) -> str:
    if subject.rejected_properties:
        return (
            f"resource: {subject.logical_id}, type: {subject.resource_type}, "
            f"rejected changes: [{', '.join(subject.rejected_properties)}], reason: {reason}"
        )
    return f"resource: {subject.logical_id}, type: {subject.resource_type}, reason: {reason}"


def log_rejected_changes(
    io_helper: IoHelper, rejected_changes: list[RejectedChange], hotswap_mode: HotswapMode
) -> None:
    """
    Reports the changes that cannot be hotswapped.

    In hotswap-only mode, rejections that are not ``hotswap_only_visible`` are left out: the change they
    describe is hotswapped anyway (e.g. a task definition that is not referenced by any service).
    """
    if hotswap_mode == HotswapMode.HOTSWAP_ONLY:
        rejected_changes = [c for c in rejected_changes if c.hotswap_only_visible]

    if not rejected_changes:
        return

    messages = [""]
    if hotswap_mode == HotswapMode.HOTSWAP_ONLY:
        messages.append(HOTSWAP_ONLY_BANNER)
    else:
        messages.append(FALL_BACK_BANNER)

    for rejected_change in rejected_changes:
        messages.append("    " + non_hotswappable_change_message(rejected_change.change))
    messages.append("")

    io_helper.info("\n".join(messages))
