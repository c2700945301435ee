from typing import Callable, Dict, List, Union

ComplexType = Union[List, Dict, object]

# a (possibly nested) map of keys whose values must be copied verbatim, e.g. {"Tags": True}
KeepCase = Dict[str, Union[bool, "KeepCase"]]


def transform_object_keys(
    obj: ComplexType, transform: Callable[[str], str], keep_case: KeepCase = None
) -> ComplexType:
    """
    Returns a copy of the given object with ``transform`` applied to every dict key, recursively.

    Values below a key mapped to ``True`` in ``keep_case`` are copied without transforming their keys (the
    key itself is still transformed). Nested dicts in ``keep_case`` apply to the value of the same key, and
    apply to every element of a list value.
    """
    keep_case = keep_case or {}
    if isinstance(obj, list):
        return [transform_object_keys(item, transform, keep_case) for item in obj]
    if not isinstance(obj, dict):
        return obj

    result = {}
    for key, value in obj.items():
        nested_keep_case = keep_case.get(key)
        if nested_keep_case is True:
            result[transform(key)] = value
        else:
            result[transform(key)] = transform_object_keys(value, transform, nested_keep_case)
    return result
