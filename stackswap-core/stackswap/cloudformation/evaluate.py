"""
Evaluation of CloudFormation template expressions against a deployed stack.

Hotswap operations call the service APIs directly, so every value they send has to be resolved the way
CloudFormation would resolve it: ``Ref`` and ``Fn::GetAtt`` are looked up in the resources of the deployed
stack, parameters and pseudo parameters come from the evaluation context, and the string functions are
applied locally.
"""

import asyncio
import base64
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional

from stackswap.constants import (
    CFN_STACK_RESOURCE_TYPE,
    METADATA_CONSTRUCT_PATH,
    PLACEHOLDER_AWS_NO_VALUE,
)
from stackswap.exceptions import CfnEvaluationException
from stackswap.utils.strings import to_bytes, to_str

if TYPE_CHECKING:
    from stackswap.aws.connect import SDK
    from stackswap.cloudformation.nested_stacks import NestedStackTemplates

LOG = logging.getLogger(__name__)

REGEX_SUB_PLACEHOLDER = re.compile(r"\$\{([^}]*)\}")


@dataclass
class ResourceMetadata:
    """Information about the construct a resource was synthesized from, used to point users at their code."""

    construct_path: str
    entry: dict = field(default_factory=dict)


@dataclass
class ResourceDefinition:
    logical_id: str
    type: str
    properties: dict = field(default_factory=dict)


@dataclass
class ArnParts:
    partition: str
    service: str
    region: str
    account: str
    resource_type: str
    resource_name: str


def _iam_arn(parts: ArnParts) -> str:
    return f"arn:{parts.partition}:iam::{parts.account}:{parts.resource_type}/{parts.resource_name}"


def _s3_arn(parts: ArnParts) -> str:
    return f"arn:{parts.partition}:s3:::{parts.resource_name}"


def _std_colon_resource_arn(parts: ArnParts) -> str:
    return (
        f"arn:{parts.partition}:{parts.service}:{parts.region}:{parts.account}:"
        f"{parts.resource_type}:{parts.resource_name}"
    )


def _std_slash_resource_arn(parts: ArnParts) -> str:
    return (
        f"arn:{parts.partition}:{parts.service}:{parts.region}:{parts.account}:"
        f"{parts.resource_type}/{parts.resource_name}"
    )


def _arn_segment(index: int) -> Callable[[ArnParts], str]:
    # e.g. the API ID of arn:aws:appsync:us-east-1:111111111111:apis/<api-id>
    def _format(parts: ArnParts) -> str:
        return parts.resource_name.split("/")[index]

    return _format


# attribute formats of Fn::GetAtt, for the resource types whose attributes can be derived from the physical ID
RESOURCE_TYPE_ATTRIBUTES_FORMATS: dict[str, dict[str, Callable[[ArnParts], str]]] = {
    "AWS::IAM::Role": {"Arn": _iam_arn},
    "AWS::IAM::User": {"Arn": _iam_arn},
    "AWS::IAM::Group": {"Arn": _iam_arn},
    "AWS::S3::Bucket": {"Arn": _s3_arn},
    "AWS::Lambda::Function": {"Arn": _std_colon_resource_arn},
    "AWS::Events::EventBus": {
        "Arn": _std_slash_resource_arn,
        "Name": lambda parts: parts.resource_name,
    },
    "AWS::DynamoDB::Table": {"Arn": _std_slash_resource_arn},
    "AWS::AppSync::GraphQLApi": {"ApiId": _arn_segment(1)},
    "AWS::AppSync::FunctionConfiguration": {"FunctionId": _arn_segment(3)},
    "AWS::AppSync::DataSource": {"Name": _arn_segment(3)},
    "AWS::KMS::Key": {"Arn": _std_slash_resource_arn},
}

# resource types whose ARN resource type segment is not the lowercased type name
RESOURCE_TYPE_SPECIAL_NAMES = {
    "AWS::Events::EventBus": "event-bus",
}


class LazyListStackResources:
    """Lists the resources of a deployed stack once, on first use."""

    def __init__(self, sdk: "SDK", stack_name: str):
        self.sdk = sdk
        self.stack_name = stack_name
        self._stack_resources: Optional[list[dict]] = None
        self._lock = asyncio.Lock()

    async def list_stack_resources(self) -> list[dict]:
        async with self._lock:
            if self._stack_resources is None:
                self._stack_resources = await self._fetch()
            return self._stack_resources

    async def _fetch(self) -> list[dict]:
        LOG.debug("Listing resources of stack %s", self.stack_name)
        result = []
        kwargs = {"StackName": self.stack_name}
        while True:
            response = await self.sdk.cloudformation.list_stack_resources(**kwargs)
            result.extend(response.get("StackResourceSummaries", []))
            next_token = response.get("NextToken")
            if not next_token:
                return result
            kwargs["NextToken"] = next_token


class LazyLookupExport:
    """Looks up stack exports, caching every export seen while paging through ``ListExports``."""

    def __init__(self, sdk: "SDK"):
        self.sdk = sdk
        self._cached_exports: dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def lookup_export(self, name: str) -> Optional[dict]:
        async with self._lock:
            if name in self._cached_exports:
                return self._cached_exports[name]

            kwargs = {}
            while True:
                response = await self.sdk.cloudformation.list_exports(**kwargs)
                for export in response.get("Exports", []):
                    if not export.get("Name"):
                        continue
                    self._cached_exports[export["Name"]] = export
                if name in self._cached_exports:
                    return self._cached_exports[name]
                next_token = response.get("NextToken")
                if not next_token:
                    return None
                kwargs["NextToken"] = next_token


def references_logical_id(template_element: Any, logical_id: str) -> bool:
    """Whether any value in the given template element refers to the logical ID."""
    if isinstance(template_element, str):
        return template_element == logical_id
    if isinstance(template_element, list):
        return any(references_logical_id(item, logical_id) for item in template_element)
    if isinstance(template_element, dict):
        sub = template_element.get("Fn::Sub")
        if sub is not None and len(template_element) == 1:
            sub_template = sub[0] if isinstance(sub, list) else sub
            if isinstance(sub_template, str) and _sub_references(sub_template, logical_id):
                return True
        return any(references_logical_id(value, logical_id) for value in template_element.values())
    return False


def _sub_references(sub_template: str, logical_id: str) -> bool:
    for placeholder in REGEX_SUB_PLACEHOLDER.findall(sub_template):
        if placeholder.split(".")[0] == logical_id:
            return True
    return False


def remove_no_values(value: Any) -> Any:
    """Removes all entries that evaluated to ``AWS::NoValue``."""
    if isinstance(value, dict):
        return {
            key: remove_no_values(item)
            for key, item in value.items()
            if item != PLACEHOLDER_AWS_NO_VALUE
        }
    if isinstance(value, list):
        return [remove_no_values(item) for item in value if item != PLACEHOLDER_AWS_NO_VALUE]
    return value


class EvaluateCloudFormationTemplate:
    """
    Evaluates expressions of a template in the context of the deployed stack with the given name.

    The evaluation context holds the pseudo parameters (``AWS::Region`` etc.), the default values of the
    template parameters, and the parameters given explicitly. Everything else is looked up in the deployed
    stack, whose resources are only listed when an expression needs them.
    """

    def __init__(
        self,
        stack_name: str,
        template: dict,
        parameters: dict[str, Any],
        account: str,
        region: str,
        partition: str,
        sdk: "SDK",
        nested_stacks: dict[str, "NestedStackTemplates"] = None,
        url_suffix: str = "amazonaws.com",
        stack_id: Optional[str] = None,
        stack_resources: Optional[LazyListStackResources] = None,
        lookup_export: Optional[LazyLookupExport] = None,
    ):
        self.stack_name = stack_name
        self.template = template or {}
        self.template_resources: dict[str, dict] = self.template.get("Resources") or {}
        self.account = account
        self.region = region
        self.partition = partition
        self.url_suffix = url_suffix
        self.sdk = sdk
        self.nested_stacks = nested_stacks or {}
        self.stack_resources = stack_resources or LazyListStackResources(sdk, stack_name)
        self.lookup_export = lookup_export or LazyLookupExport(sdk)

        self.context: dict[str, Any] = {
            "AWS::AccountId": account,
            "AWS::Region": region,
            "AWS::Partition": partition,
            "AWS::URLSuffix": url_suffix,
            "AWS::StackName": stack_name,
            "AWS::NoValue": PLACEHOLDER_AWS_NO_VALUE,
        }
        if stack_id:
            self.context["AWS::StackId"] = stack_id
        for name, parameter in (self.template.get("Parameters") or {}).items():
            if "Default" in parameter:
                self.context[name] = parameter["Default"]
        self.context.update(parameters or {})

    async def create_nested_evaluate_cloud_formation_template(
        self,
        stack_name: str,
        nested_template: dict,
        nested_stack_parameters: Optional[dict],
        nested_stacks: dict[str, "NestedStackTemplates"] = None,
    ) -> "EvaluateCloudFormationTemplate":
        """
        Creates the evaluation context of a nested stack. The parameters passed to the nested stack are
        evaluated in the context of this (parent) stack.
        """
        evaluated_parameters = await self.evaluate_cfn_expression(nested_stack_parameters or {})
        return EvaluateCloudFormationTemplate(
            stack_name=stack_name,
            template=nested_template,
            parameters=evaluated_parameters,
            account=self.account,
            region=self.region,
            partition=self.partition,
            sdk=self.sdk,
            nested_stacks=nested_stacks,
            url_suffix=self.url_suffix,
            lookup_export=self.lookup_export,
        )

    async def establish_resource_physical_name(
        self, logical_id: str, physical_name_in_cfn_template: Any
    ) -> Optional[str]:
        """
        Returns the physical name of a resource, either from the name given in the template or, if the
        template does not name the resource (or the name cannot be evaluated), from the deployed stack.
        """
        if physical_name_in_cfn_template is not None:
            try:
                return await self.evaluate_cfn_expression(physical_name_in_cfn_template)
            except CfnEvaluationException as e:
                LOG.debug(
                    "Unable to evaluate physical name of %s from the template: %s", logical_id, e
                )
        return await self.find_physical_name_for(logical_id)

    async def find_physical_name_for(self, logical_id: str) -> Optional[str]:
        stack_resources = await self.stack_resources.list_stack_resources()
        for resource in stack_resources:
            if resource.get("LogicalResourceId") == logical_id:
                return resource.get("PhysicalResourceId")
        return None

    async def find_logical_id_for_physical_name(self, physical_name: str) -> Optional[str]:
        stack_resources = await self.stack_resources.list_stack_resources()
        for resource in stack_resources:
            if resource.get("PhysicalResourceId") == physical_name:
                return resource.get("LogicalResourceId")
        return None

    def find_references_to(self, logical_id: str) -> list[ResourceDefinition]:
        """Returns all other resources of the template that refer to the given logical ID in any way."""
        result = []
        for other_id, resource in self.template_resources.items():
            if other_id == logical_id:
                continue
            if references_logical_id(resource, logical_id):
                result.append(
                    ResourceDefinition(
                        logical_id=other_id,
                        type=resource.get("Type"),
                        properties=resource.get("Properties") or {},
                    )
                )
        return result

    def get_resource_property(self, logical_id: str, property_name: str) -> Any:
        """Returns the raw, unevaluated value of a property of a resource in the template."""
        resource = self.template_resources.get(logical_id) or {}
        return (resource.get("Properties") or {}).get(property_name)

    def metadata_for(self, logical_id: str) -> Optional[ResourceMetadata]:
        resource = self.template_resources.get(logical_id) or {}
        metadata = resource.get("Metadata") or {}
        construct_path = metadata.get(METADATA_CONSTRUCT_PATH)
        if not construct_path:
            return None
        return ResourceMetadata(construct_path=construct_path, entry=metadata)

    async def evaluate_cfn_expression(self, cfn_expression: Any) -> Any:
        """
        Evaluates the given template expression.

        :raises CfnEvaluationException: if the expression uses an unsupported intrinsic function, or refers to
            a parameter, resource, attribute or export that cannot be resolved
        """
        result = await self._evaluate(cfn_expression)
        if result == PLACEHOLDER_AWS_NO_VALUE:
            return None
        return remove_no_values(result)

    async def _evaluate(self, value: Any) -> Any:
        if isinstance(value, list):
            return [await self._evaluate(item) for item in value]
        if not isinstance(value, dict):
            return value

        if len(value) == 1:
            key, args = next(iter(value.items()))
            if key == "Ref" or key.startswith("Fn::"):
                return await self._evaluate_intrinsic(key, args)

        return {key: await self._evaluate(item) for key, item in value.items()}

    async def _evaluate_intrinsic(self, name: str, args: Any) -> Any:
        match name:
            case "Ref":
                return await self._ref(args)
            case "Fn::GetAtt":
                if isinstance(args, str):
                    args = args.split(".", 1)
                logical_id, attribute = await self._evaluate(args)
                return await self._get_att(logical_id, attribute)
            case "Fn::Join":
                separator, items = await self._evaluate(args)
                return separator.join(str(item) for item in items)
            case "Fn::Split":
                separator, source = await self._evaluate(args)
                return source.split(separator)
            case "Fn::Select":
                index, items = await self._evaluate(args)
                return items[int(index)]
            case "Fn::Sub":
                return await self._sub(args)
            case "Fn::ImportValue":
                return await self._import_value(await self._evaluate(args))
            case "Fn::Base64":
                return to_str(base64.b64encode(to_bytes(await self._evaluate(args))))
            case _:
                raise CfnEvaluationException(f"CloudFormation function {name} is not supported")

    async def _ref(self, logical_id: str) -> Any:
        if logical_id in self.context:
            return self.context[logical_id]
        result = await self._find_get_att_target(logical_id)
        if result is None:
            raise CfnEvaluationException(
                f"Parameter or resource '{logical_id}' could not be found for evaluation"
            )
        return result

    async def _get_att(self, logical_id: str, attribute: str) -> Any:
        result = await self._find_get_att_target(logical_id, attribute)
        if result is None:
            raise CfnEvaluationException(
                f"Attribute '{attribute}' of resource '{logical_id}' could not be found for evaluation"
            )
        return result

    async def _sub(self, args: Any) -> str:
        if isinstance(args, list):
            template, explicit_placeholders = args[0], await self._evaluate(args[1])
        else:
            template, explicit_placeholders = args, {}

        result = ""
        position = 0
        for match in REGEX_SUB_PLACEHOLDER.finditer(template):
            result += template[position : match.start()]
            position = match.end()
            key = match.group(1)
            if key.startswith("!"):
                # ${!Literal} is written out as ${Literal}
                result += f"${{{key[1:]}}}"
            elif key in explicit_placeholders:
                result += str(explicit_placeholders[key])
            elif "." in key:
                logical_id, attribute = key.split(".", 1)
                result += str(await self._get_att(logical_id, attribute))
            else:
                result += str(await self._ref(key))
        return result + template[position:]

    async def _import_value(self, name: str) -> str:
        exported = await self.lookup_export.lookup_export(name)
        if not exported:
            raise CfnEvaluationException(f"Export '{name}' could not be found for evaluation")
        if not exported.get("Value"):
            raise CfnEvaluationException(f"Export '{name}' exists without a value")
        return exported["Value"]

    async def _find_get_att_target(
        self, logical_id: str, attribute: Optional[str] = None
    ) -> Optional[str]:
        stack_resources = await self.stack_resources.list_stack_resources()
        found_resource = next(
            (r for r in stack_resources if r.get("LogicalResourceId") == logical_id), None
        )
        if not found_resource:
            return None

        if (
            found_resource.get("ResourceType") == CFN_STACK_RESOURCE_TYPE
            and attribute
            and attribute.startswith("Outputs.")
        ):
            return await self._find_nested_stack_output(
                found_resource["PhysicalResourceId"], attribute[len("Outputs.") :]
            )

        return self._format_resource_attribute(found_resource, attribute)

    async def _find_nested_stack_output(self, stack_name: str, output_key: str) -> Optional[str]:
        response = await self.sdk.cloudformation.describe_stacks(StackName=stack_name)
        for stack in response.get("Stacks", []):
            for output in stack.get("Outputs") or []:
                if output.get("OutputKey") == output_key:
                    return output.get("OutputValue")
        return None

    def _format_resource_attribute(self, resource: dict, attribute: Optional[str]) -> str:
        physical_id = resource.get("PhysicalResourceId")
        # no attribute means a Ref expression, for which the physical ID is used directly
        if not attribute:
            return physical_id

        resource_type = resource["ResourceType"]
        formats = RESOURCE_TYPE_ATTRIBUTES_FORMATS.get(resource_type)
        if not formats:
            raise CfnEvaluationException(
                f"Attributes of the '{resource_type}' resource are not supported for evaluation"
            )
        format_attribute = formats.get(attribute)
        if not format_attribute:
            raise CfnEvaluationException(
                f"The '{attribute}' attribute of the '{resource_type}' resource is not supported for evaluation"
            )

        _, service, type_name = resource_type.split("::")
        return format_attribute(
            ArnParts(
                partition=self.partition,
                service=service.lower(),
                region=self.region,
                account=self.account,
                resource_type=RESOURCE_TYPE_SPECIAL_NAMES.get(resource_type, type_name.lower()),
                resource_name=physical_id,
            )
        )
