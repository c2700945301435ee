"""
Structural diff of two CloudFormation templates.

Only the parts needed to decide about hotswapping are modelled: resources (with a per-property breakdown) and
outputs. Values are compared with python equality, i.e. maps are order-independent and lists order-dependent.
"""

from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")

# top-level attributes of a resource besides Type and Properties
RESOURCE_ATTRIBUTES = (
    "Condition",
    "CreationPolicy",
    "DeletionPolicy",
    "DependsOn",
    "Metadata",
    "UpdatePolicy",
    "UpdateReplacePolicy",
)


class Difference(Generic[T]):
    """A (potential) difference between an old and a new value. Either value may be None."""

    def __init__(self, old_value: Optional[T], new_value: Optional[T]):
        self.old_value = old_value
        self.new_value = new_value

    @property
    def is_addition(self) -> bool:
        return self.old_value is None and self.new_value is not None

    @property
    def is_removal(self) -> bool:
        return self.old_value is not None and self.new_value is None

    @property
    def is_update(self) -> bool:
        return self.old_value is not None and self.new_value is not None

    @property
    def is_different(self) -> bool:
        return self.old_value != self.new_value

    def __repr__(self):
        return f"{self.__class__.__name__}(old_value={self.old_value!r}, new_value={self.new_value!r})"


class PropertyDifference(Difference[Any]):
    pass


class ResourceDifference(Difference[dict]):
    """
    The difference between two versions of a resource definition (``{"Type": ..., "Properties": ...}``).

    ``property_diffs`` and ``other_diffs`` are computed from the two values unless given explicitly, which is
    how a rename pair is collapsed into a single difference.
    """

    def __init__(
        self,
        old_value: Optional[dict],
        new_value: Optional[dict],
        property_diffs: dict[str, PropertyDifference] = None,
        other_diffs: dict[str, Difference] = None,
    ):
        super().__init__(old_value, new_value)
        if property_diffs is None:
            property_diffs = diff_properties(self.old_properties, self.new_properties)
        if other_diffs is None:
            other_diffs = diff_attributes(old_value or {}, new_value or {})
        self.property_diffs = property_diffs
        self.other_diffs = other_diffs

    @property
    def old_resource_type(self) -> Optional[str]:
        return (self.old_value or {}).get("Type")

    @property
    def new_resource_type(self) -> Optional[str]:
        return (self.new_value or {}).get("Type")

    @property
    def old_properties(self) -> Optional[dict]:
        return (self.old_value or {}).get("Properties")

    @property
    def new_properties(self) -> Optional[dict]:
        return (self.new_value or {}).get("Properties")

    @property
    def property_updates(self) -> dict[str, PropertyDifference]:
        """The properties whose values differ between the old and the new resource."""
        return {
            name: diff for name, diff in self.property_diffs.items() if diff.is_different
        }

    @property
    def is_different(self) -> bool:
        if self.old_resource_type != self.new_resource_type:
            return True
        return bool(self.property_updates) or any(
            diff.is_different for diff in self.other_diffs.values()
        )


class DifferenceCollection(Generic[T]):
    """A collection of differences keyed by logical ID, holding only the entries that actually differ."""

    def __init__(self, diffs: dict[str, T]):
        self.diffs = diffs

    @property
    def changes(self) -> dict[str, T]:
        return {key: diff for key, diff in self.diffs.items() if diff.is_different}

    def get(self, logical_id: str) -> Optional[T]:
        return self.diffs.get(logical_id)

    def __len__(self):
        return len(self.changes)


class TemplateDiff:
    def __init__(
        self,
        resources: DifferenceCollection[ResourceDifference],
        outputs: DifferenceCollection[Difference],
        parameters: DifferenceCollection[Difference],
    ):
        self.resources = resources
        self.outputs = outputs
        self.parameters = parameters

    @property
    def is_empty(self) -> bool:
        return not (self.resources.changes or self.outputs.changes or self.parameters.changes)


def diff_properties(
    old_properties: Optional[dict], new_properties: Optional[dict]
) -> dict[str, PropertyDifference]:
    old_properties = old_properties or {}
    new_properties = new_properties or {}
    result = {}
    for name in {**old_properties, **new_properties}:
        result[name] = PropertyDifference(old_properties.get(name), new_properties.get(name))
    return result


def diff_attributes(old_resource: dict, new_resource: dict) -> dict[str, Difference]:
    result = {}
    for name in RESOURCE_ATTRIBUTES:
        if name in old_resource or name in new_resource:
            result[name] = Difference(old_resource.get(name), new_resource.get(name))
    return result


def diff_resource(old_value: Optional[dict], new_value: Optional[dict]) -> ResourceDifference:
    return ResourceDifference(old_value, new_value)


def _diff_section(old_section: Optional[dict], new_section: Optional[dict], diff_fn) -> dict:
    old_section = old_section or {}
    new_section = new_section or {}
    return {
        key: diff_fn(old_section.get(key), new_section.get(key))
        for key in {**old_section, **new_section}
    }


def full_diff(current_template: Optional[dict], new_template: Optional[dict]) -> TemplateDiff:
    """
    Computes the differences between the currently deployed template and the desired one.

    :param current_template: the deployed template, or None/empty for a stack that does not exist yet
    :param new_template: the desired template
    :return: the template diff
    """
    current_template = current_template or {}
    new_template = new_template or {}
    return TemplateDiff(
        resources=DifferenceCollection(
            _diff_section(
                current_template.get("Resources"), new_template.get("Resources"), diff_resource
            )
        ),
        outputs=DifferenceCollection(
            _diff_section(current_template.get("Outputs"), new_template.get("Outputs"), Difference)
        ),
        parameters=DifferenceCollection(
            _diff_section(
                current_template.get("Parameters"), new_template.get("Parameters"), Difference
            )
        ),
    )
