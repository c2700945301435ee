"""Data model shared by the hotswap detectors, the change-set builder and the executor."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Literal, Optional, Union

from stackswap.cloudformation.diff import PropertyDifference
from stackswap.cloudformation.evaluate import ResourceMetadata
from stackswap.exceptions import ToolkitError

if TYPE_CHECKING:
    from stackswap.aws.connect import SDK

ICON = "✨"

PropDiffs = dict[str, PropertyDifference]


class HotswapMode(str, Enum):
    # fall back to a full deployment when a non-hotswappable change is detected
    FALL_BACK = "fall-back"
    # apply whatever is hotswappable and only report the rest
    HOTSWAP_ONLY = "hotswap-only"
    # do not attempt to hotswap anything
    FULL_DEPLOYMENT = "full-deployment"


class NonHotswappableReason(str, Enum):
    TAGS = "tags"
    PROPERTIES = "properties"
    OUTPUT = "output"
    DEPENDENCY_UNSUPPORTED = "dependency-unsupported"
    RESOURCE_UNSUPPORTED = "resource-unsupported"
    RESOURCE_CREATION = "resource-creation"
    RESOURCE_DELETION = "resource-deletion"
    RESOURCE_TYPE_CHANGED = "resource-type-changed"
    NESTED_STACK_CREATION = "nested-stack-creation"


@dataclass(frozen=True)
class ResourceChange:
    """A modification of a resource that keeps its logical ID and type, i.e. a candidate for hotswapping."""

    logical_id: str
    old_value: dict
    new_value: dict
    property_updates: PropDiffs
    metadata: Optional[ResourceMetadata] = None

    @property
    def resource_type(self) -> str:
        return self.new_value["Type"]


@dataclass(frozen=True)
class AffectedResource:
    logical_id: str
    resource_type: str
    physical_name: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[ResourceMetadata] = None

    @property
    def text(self) -> str:
        """How the resource is named in progress messages."""
        return self.description or f"{self.resource_type} '{self.physical_name or self.logical_id}'"


@dataclass(frozen=True)
class HotswappableChange:
    cause: ResourceChange
    resources: list[AffectedResource] = field(default_factory=list)


@dataclass(frozen=True)
class ResourceSubject:
    logical_id: str
    resource_type: str
    rejected_properties: list[str] = field(default_factory=list)
    metadata: Optional[ResourceMetadata] = None
    type: Literal["Resource"] = "Resource"


@dataclass(frozen=True)
class OutputSubject:
    logical_id: str
    metadata: Optional[ResourceMetadata] = None
    type: Literal["Output"] = "Output"


@dataclass(frozen=True)
class NonHotswappableChange:
    reason: NonHotswappableReason
    description: str
    subject: Union[ResourceSubject, OutputSubject]


@dataclass(frozen=True)
class HotswapOperation:
    """
    A change that can be applied directly to the deployed resources.

    ``service`` names the service being hotswapped, it is used to label the SDK calls of the operation.
    ``apply`` performs the SDK calls and is invoked exactly once by the executor.
    """

    service: str
    change: HotswappableChange
    apply: Callable[["SDK"], Awaitable[None]]
    hotswappable: Literal[True] = True


@dataclass(frozen=True)
class RejectedChange:
    """
    A change that cannot be hotswapped.

    Rejections with ``hotswap_only_visible`` set to False are only reported when falling back to a full
    deployment, since in hotswap-only mode the change they describe is still hotswapped via another resource.
    """

    change: NonHotswappableChange
    hotswap_only_visible: bool = True
    hotswappable: Literal[False] = False


ClassifiedChange = Union[HotswapOperation, RejectedChange]


@dataclass
class HotswapResult:
    mode: HotswapMode
    # False means the deployment could not be hotswapped, and a full deployment may follow
    hotswapped: bool
    hotswappable_changes: list[HotswappableChange] = field(default_factory=list)
    non_hotswappable_changes: list[NonHotswappableChange] = field(default_factory=list)


class EcsHotswapProperties:
    """
    Deployment configuration used when hotswapping ECS services.

    :param minimum_healthy_percent: lower limit on the number of RUNNING tasks during the deployment, as a
        percentage of the desired count. Defaults to 0.
    :param maximum_healthy_percent: upper limit on the number of RUNNING or PENDING tasks during the
        deployment, as a percentage of the desired count
    """

    def __init__(
        self,
        minimum_healthy_percent: Optional[int] = None,
        maximum_healthy_percent: Optional[int] = None,
    ):
        if minimum_healthy_percent is not None and minimum_healthy_percent < 0:
            raise ToolkitError("hotswap-ecs-minimum-healthy-percent can't be a negative number")
        if maximum_healthy_percent is not None and maximum_healthy_percent < 0:
            raise ToolkitError("hotswap-ecs-maximum-healthy-percent can't be a negative number")
        self.minimum_healthy_percent = (
            0 if minimum_healthy_percent is None else minimum_healthy_percent
        )
        self.maximum_healthy_percent = maximum_healthy_percent

    def is_empty(self) -> bool:
        return self.minimum_healthy_percent == 0 and self.maximum_healthy_percent is None


class HotswapPropertyOverrides:
    """Overrides of the properties used by hotswap operations, per resource type."""

    def __init__(self, ecs_hotswap_properties: Optional[EcsHotswapProperties] = None):
        self.ecs_hotswap_properties = ecs_hotswap_properties


class ClassifiedChanges:
    """The property updates of a resource change, split by an allow-list of hotswappable property names."""

    def __init__(
        self,
        change: ResourceChange,
        hotswappable_props: PropDiffs,
        non_hotswappable_props: PropDiffs,
    ):
        self.change = change
        self.hotswappable_props = hotswappable_props
        self.non_hotswappable_props = non_hotswappable_props

    def report_non_hotswappable_property_changes(self, ret: list[ClassifiedChange]) -> None:
        non_hotswappable_prop_names = list(self.non_hotswappable_props)
        if not non_hotswappable_prop_names:
            return

        tag_only_change = non_hotswappable_prop_names == ["Tags"]
        if tag_only_change:
            reason = NonHotswappableReason.TAGS
            description = "Tags are not hotswappable"
        else:
            reason = NonHotswappableReason.PROPERTIES
            description = (
                f"resource properties '{','.join(non_hotswappable_prop_names)}' "
                f"are not hotswappable on this resource type"
            )
        ret.append(
            non_hotswappable_change(self.change, reason, description, self.non_hotswappable_props)
        )

    @property
    def names_of_hotswappable_props(self) -> list[str]:
        return list(self.hotswappable_props)


def classify_changes(
    change: ResourceChange, hotswappable_prop_names: list[str]
) -> ClassifiedChanges:
    hotswappable_props = {}
    non_hotswappable_props = {}
    for name, prop_diff in change.property_updates.items():
        if name in hotswappable_prop_names:
            hotswappable_props[name] = prop_diff
        else:
            non_hotswappable_props[name] = prop_diff
    return ClassifiedChanges(change, hotswappable_props, non_hotswappable_props)


def non_hotswappable_change(
    change: ResourceChange,
    reason: NonHotswappableReason,
    description: str,
    non_hotswappable_props: Optional[PropDiffs] = None,
    hotswap_only_visible: bool = True,
) -> RejectedChange:
    rejected_properties = (
        change.property_updates if non_hotswappable_props is None else non_hotswappable_props
    )
    return RejectedChange(
        change=NonHotswappableChange(
            reason=reason,
            description=description,
            subject=ResourceSubject(
                logical_id=change.logical_id,
                resource_type=change.resource_type,
                rejected_properties=list(rejected_properties),
                metadata=change.metadata,
            ),
        ),
        hotswap_only_visible=hotswap_only_visible,
    )


def non_hotswappable_resource(change: ResourceChange) -> RejectedChange:
    return non_hotswappable_change(
        change,
        NonHotswappableReason.RESOURCE_UNSUPPORTED,
        "This resource type is not supported for hotswap deployments",
    )
