import json
from typing import Union

import yaml


# create safe yaml loader that parses date strings as string, not date objects
class NoDatesSafeLoader(yaml.SafeLoader):
    pass


NoDatesSafeLoader.yaml_implicit_resolvers = {
    k: [r for r in v if r[0] != "tag:yaml.org,2002:timestamp"]
    for k, v in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _construct_intrinsic(loader: yaml.Loader, tag_suffix: str, node: yaml.Node) -> dict:
    # short form intrinsics, e.g. `!Ref MyBucket` or `!GetAtt MyFunction.Arn`
    name = tag_suffix if tag_suffix == "Ref" else f"Fn::{tag_suffix}"
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
        if name == "Fn::GetAtt":
            value = value.split(".", 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {name: value}


NoDatesSafeLoader.add_multi_constructor("!", _construct_intrinsic)


def parse_template(template: Union[str, dict, None]) -> dict:
    """Parses a template body given as JSON or YAML. Templates already parsed by the SDK are returned as-is."""
    if not template:
        return {}
    if isinstance(template, dict):
        return template
    try:
        return json.loads(template)
    except ValueError:
        return yaml.load(template, Loader=NoDatesSafeLoader) or {}


def load_template_file(path: str) -> dict:
    with open(path, "r") as template_file:
        return parse_template(template_file.read())

