from stackswap.hotswap.common import (
    HotswapMode,
    NonHotswappableChange,
    NonHotswappableReason,
    OutputSubject,
    RejectedChange,
    ResourceSubject,
)
from stackswap.hotswap.reporting import (
    FALL_BACK_BANNER,
    HOTSWAP_ONLY_BANNER,
    log_rejected_changes,
    non_hotswappable_change_message,
)
from stackswap.io import as_io_helper


def _rejected_resource(logical_id="Role1", properties=None, hotswap_only_visible=True):
    return RejectedChange(
        change=NonHotswappableChange(
            reason=NonHotswappableReason.RESOURCE_UNSUPPORTED,
            description="This resource type is not supported for hotswap deployments",
            subject=ResourceSubject(
                logical_id=logical_id,
                resource_type="AWS::IAM::Role",
                rejected_properties=properties or [],
            ),
        ),
        hotswap_only_visible=hotswap_only_visible,
    )


class TestNonHotswappableChangeMessage:
    def test_output(self):
        change = NonHotswappableChange(
            reason=NonHotswappableReason.OUTPUT,
            description="output was changed",
            subject=OutputSubject(logical_id="Url"),
        )
        assert non_hotswappable_change_message(change) == "output: Url, reason: output was changed"

    def test_resource_with_rejected_properties(self):
        change = _rejected_resource(properties=["Description", "Path"]).change
        assert non_hotswappable_change_message(change) == (
            "resource: Role1, type: AWS::IAM::Role, rejected changes: [Description, Path], "
            "reason: This resource type is not supported for hotswap deployments"
        )

    def test_resource_without_rejected_properties(self):
        change = _rejected_resource().change
        assert non_hotswappable_change_message(change) == (
            "resource: Role1, type: AWS::IAM::Role, "
            "reason: This resource type is not supported for hotswap deployments"
        )

    def test_reason_is_used_without_description(self):
        change = NonHotswappableChange(
            reason=NonHotswappableReason.TAGS,
            description="",
            subject=ResourceSubject(logical_id="Fn", resource_type="AWS::Lambda::Function"),
        )
        assert non_hotswappable_change_message(change).endswith("reason: tags")


class TestLogRejectedChanges:
    def test_nothing_is_logged_without_rejections(self, io_host):
        log_rejected_changes(as_io_helper(io_host), [], HotswapMode.FALL_BACK)
        assert io_host.messages == []

    def test_fall_back_mode(self, io_host):
        log_rejected_changes(
            as_io_helper(io_host),
            [_rejected_resource("A"), _rejected_resource("B", hotswap_only_visible=False)],
            HotswapMode.FALL_BACK,
        )

        [message] = io_host.texts
        lines = message.split("\n")
        assert lines[0] == ""
        assert lines[1] == FALL_BACK_BANNER
        assert lines[2].startswith("    resource: A,")
        assert lines[3].startswith("    resource: B,")
        assert lines[4] == ""

    def test_hotswap_only_mode_hides_invisible_rejections(self, io_host):
        log_rejected_changes(
            as_io_helper(io_host),
            [_rejected_resource("A"), _rejected_resource("B", hotswap_only_visible=False)],
            HotswapMode.HOTSWAP_ONLY,
        )

        [message] = io_host.texts
        assert HOTSWAP_ONLY_BANNER in message
        assert "resource: A," in message
        assert "resource: B," not in message

    def test_hotswap_only_mode_with_only_invisible_rejections(self, io_host):
        log_rejected_changes(
            as_io_helper(io_host),
            [_rejected_resource("B", hotswap_only_visible=False)],
            HotswapMode.HOTSWAP_ONLY,
        )
        assert io_host.messages == []
