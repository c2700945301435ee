import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from stackswap import config
from stackswap.cloudformation.evaluate import EvaluateCloudFormationTemplate, ResourceDefinition
from stackswap.constants import (
    LAMBDA_ALIAS_RESOURCE_TYPE,
    LAMBDA_FUNCTION_RESOURCE_TYPE,
    LAMBDA_VERSION_RESOURCE_TYPE,
)
from stackswap.exceptions import CfnEvaluationException, ToolkitError
from stackswap.hotswap.common import (
    AffectedResource,
    ClassifiedChange,
    HotswapOperation,
    HotswappableChange,
    NonHotswappableReason,
    PropDiffs,
    ResourceChange,
    classify_changes,
    non_hotswappable_change,
)
from stackswap.hotswap.registry import HotswapDetector, register_detector
from stackswap.utils.archives import create_zip_file_from_string
from stackswap.utils.waiter import sdk_waiter_check, wait_until_ready

LOG = logging.getLogger(__name__)

HOTSWAPPABLE_FUNCTION_PROPERTIES = ["Code", "Environment", "Description"]

# functions outside a VPC and with zip packages are updated within seconds
LAMBDA_QUICK_UPDATE_DELAY = 1


@dataclass
class LambdaFunctionCode:
    s3_bucket: Optional[str] = None
    s3_key: Optional[str] = None
    s3_object_version: Optional[str] = None
    image_uri: Optional[str] = None
    function_code_zip: Optional[bytes] = None

    def to_request(self) -> dict:
        request = {
            "S3Bucket": self.s3_bucket,
            "S3Key": self.s3_key,
            "S3ObjectVersion": self.s3_object_version,
            "ImageUri": self.image_uri,
            "ZipFile": self.function_code_zip,
        }
        return {key: value for key, value in request.items() if value is not None}


@dataclass
class LambdaFunctionConfigurations:
    description: Optional[str] = None
    environment: Optional[dict] = None


@dataclass
class LambdaFunctionChange:
    code: Optional[LambdaFunctionCode] = None
    configurations: Optional[LambdaFunctionConfigurations] = None


def determine_code_file_ext_from_runtime(runtime: str) -> str:
    if runtime.startswith("node"):
        return "js"
    if runtime.startswith("python"):
        return "py"
    # inline code is only supported for Node.js and Python runtimes
    raise CfnEvaluationException(
        f"runtime {runtime} is unsupported, only node.js and python runtimes are currently supported."
    )


async def evaluate_lambda_function_props(
    hotswappable_prop_changes: PropDiffs,
    runtime: Any,
    evaluate_cfn_template: EvaluateCloudFormationTemplate,
) -> Optional[LambdaFunctionChange]:
    """Evaluates the new values of the changed properties of a function into the requests to send."""
    code = None
    description = None
    environment = None

    for name, prop_diff in hotswappable_prop_changes.items():
        match name:
            case "Code":
                code = LambdaFunctionCode()
                for code_prop, code_value in (prop_diff.new_value or {}).items():
                    match code_prop:
                        case "S3Bucket":
                            code.s3_bucket = await evaluate_cfn_template.evaluate_cfn_expression(
                                code_value
                            )
                        case "S3Key":
                            code.s3_key = await evaluate_cfn_template.evaluate_cfn_expression(
                                code_value
                            )
                        case "S3ObjectVersion":
                            code.s3_object_version = (
                                await evaluate_cfn_template.evaluate_cfn_expression(code_value)
                            )
                        case "ImageUri":
                            code.image_uri = await evaluate_cfn_template.evaluate_cfn_expression(
                                code_value
                            )
                        case "ZipFile":
                            function_code = await evaluate_cfn_template.evaluate_cfn_expression(
                                code_value
                            )
                            function_runtime = await evaluate_cfn_template.evaluate_cfn_expression(
                                runtime
                            )
                            if not function_runtime:
                                raise CfnEvaluationException(
                                    "the runtime of a function with inline code could not be determined"
                                )
                            ext = determine_code_file_ext_from_runtime(function_runtime)
                            code.function_code_zip = create_zip_file_from_string(
                                f"index.{ext}", function_code
                            )
            # a removed description or environment is cleared on the function
            case "Description":
                description = await evaluate_cfn_template.evaluate_cfn_expression(
                    prop_diff.new_value
                )
                if description is None:
                    description = ""
            case "Environment":
                environment = await evaluate_cfn_template.evaluate_cfn_expression(
                    prop_diff.new_value
                )
                if environment is None:
                    environment = {"Variables": {}}
            case _:
                raise ToolkitError(
                    "while applying the change, found a property that cannot be hotswapped. "
                    "Please report this as a bug."
                )

    configurations = None
    if description is not None or environment is not None:
        configurations = LambdaFunctionConfigurations(
            description=description, environment=environment
        )
    if code is None and configurations is None:
        return None
    return LambdaFunctionChange(code=code, configurations=configurations)


def versions_and_aliases(
    logical_id: str, evaluate_cfn_template: EvaluateCloudFormationTemplate
) -> list[ResourceDefinition]:
    references = evaluate_cfn_template.find_references_to(logical_id)
    versions = [r for r in references if r.type == LAMBDA_VERSION_RESOURCE_TYPE]
    # aliases can point at the function through one of its versions
    aliases_referencing_versions = [
        alias
        for version in versions
        for alias in evaluate_cfn_template.find_references_to(version.logical_id)
        if alias.type == LAMBDA_ALIAS_RESOURCE_TYPE
    ]
    aliases_referencing_function = [r for r in references if r.type == LAMBDA_ALIAS_RESOURCE_TYPE]
    return versions + aliases_referencing_versions + aliases_referencing_function


async def dependant_resources(
    logical_id: str, function_name: str, evaluate_cfn_template: EvaluateCloudFormationTemplate
) -> list[AffectedResource]:
    candidates = versions_and_aliases(logical_id, evaluate_cfn_template)

    versions = [
        AffectedResource(
            logical_id=version.logical_id,
            resource_type=version.type,
            description=f"{version.type} for {LAMBDA_FUNCTION_RESOURCE_TYPE} '{function_name}'",
            metadata=evaluate_cfn_template.metadata_for(version.logical_id),
        )
        for version in candidates
        if version.type == LAMBDA_VERSION_RESOURCE_TYPE
    ]

    aliases = []
    seen = set()
    for alias in candidates:
        if alias.type != LAMBDA_ALIAS_RESOURCE_TYPE or alias.logical_id in seen:
            continue
        seen.add(alias.logical_id)
        name = await evaluate_cfn_template.evaluate_cfn_expression(alias.properties.get("Name"))
        aliases.append(
            AffectedResource(
                logical_id=alias.logical_id,
                resource_type=alias.type,
                physical_name=name,
                description=f"{alias.type} '{name}' for {LAMBDA_FUNCTION_RESOURCE_TYPE} '{function_name}'",
                metadata=evaluate_cfn_template.metadata_for(alias.logical_id),
            )
        )

    return versions + aliases


async def wait_for_lambda_update_to_finish(
    lambda_client, function_name: str, current_configuration: dict
) -> None:
    """
    Waits until the last update of the function is done. Updates of functions in a VPC or with container
    images take much longer, so these are polled less frequently.
    """
    in_vpc_or_image = (current_configuration.get("VpcConfig") or {}).get(
        "VpcId"
    ) or current_configuration.get("PackageType") == "Image"
    delay = config.HOTSWAP_WAITER_DELAY if in_vpc_or_image else LAMBDA_QUICK_UPDATE_DELAY

    def _describe(response: dict) -> str:
        configuration = response.get("Configuration") or {}
        status = configuration.get("LastUpdateStatus") or "Pending"
        if status == "Failed":
            return f"{status}: {configuration.get('LastUpdateStatusReason')}"
        return status

    check = sdk_waiter_check(
        "lambda",
        "FunctionUpdatedV2",
        lambda_client.get_function,
        _describe,
        FunctionName=function_name,
    )
    await wait_until_ready(check, max_wait=config.HOTSWAP_LAMBDA_UPDATE_MAX_WAIT, delay=delay)


@register_detector(
    LAMBDA_FUNCTION_RESOURCE_TYPE, LAMBDA_VERSION_RESOURCE_TYPE, LAMBDA_ALIAS_RESOURCE_TYPE
)
class LambdaFunctionDetector(HotswapDetector):
    """
    Hotswaps the code, environment and description of Lambda functions. Versions and aliases of a changed
    function are updated along with the function.
    """

    async def detect(self, logical_id, change, evaluate_cfn_template, hotswap_property_overrides):
        match change.resource_type:
            case "AWS::Lambda::Version":
                # a new version is published whenever the function it belongs to is hotswapped
                return [
                    HotswapOperation(
                        service="lambda",
                        change=HotswappableChange(
                            cause=change,
                            resources=[
                                AffectedResource(
                                    logical_id=logical_id,
                                    resource_type=LAMBDA_VERSION_RESOURCE_TYPE,
                                    physical_name="not-yet-available",
                                    metadata=evaluate_cfn_template.metadata_for(logical_id),
                                )
                            ],
                        ),
                        apply=_noop,
                    )
                ]
            case "AWS::Lambda::Alias":
                return self._classify_alias_changes(change)
            case "AWS::Lambda::Function":
                return await self._classify_function_changes(
                    logical_id, change, evaluate_cfn_template
                )
        return []

    def _classify_alias_changes(self, change: ResourceChange) -> list[ClassifiedChange]:
        # only non-hotswappable changes are reported, aliases are updated through their function
        ret = []
        classify_changes(change, ["FunctionVersion"]).report_non_hotswappable_property_changes(ret)
        return ret

    async def _classify_function_changes(
        self,
        logical_id: str,
        change: ResourceChange,
        evaluate_cfn_template: EvaluateCloudFormationTemplate,
    ) -> list[ClassifiedChange]:
        ret = []
        classified_changes = classify_changes(change, HOTSWAPPABLE_FUNCTION_PROPERTIES)
        classified_changes.report_non_hotswappable_property_changes(ret)

        if not classified_changes.names_of_hotswappable_props:
            return ret

        properties = change.new_value.get("Properties") or {}
        function_name = await evaluate_cfn_template.establish_resource_physical_name(
            logical_id, properties.get("FunctionName")
        )
        if not function_name:
            ret.append(
                non_hotswappable_change(
                    change,
                    NonHotswappableReason.PROPERTIES,
                    f"could not determine the physical name of function '{logical_id}'",
                    classified_changes.hotswappable_props,
                )
            )
            return ret

        function_change = await evaluate_lambda_function_props(
            classified_changes.hotswappable_props, properties.get("Runtime"), evaluate_cfn_template
        )
        if function_change is None:
            return ret

        dependencies = await dependant_resources(logical_id, function_name, evaluate_cfn_template)

        async def _apply(sdk) -> None:
            lambda_client = sdk.lambda_

            if function_change.code is not None:
                response = await lambda_client.update_function_code(
                    FunctionName=function_name, **function_change.code.to_request()
                )
                await wait_for_lambda_update_to_finish(lambda_client, function_name, response)

            if function_change.configurations is not None:
                request = {"FunctionName": function_name}
                if function_change.configurations.description is not None:
                    request["Description"] = function_change.configurations.description
                if function_change.configurations.environment is not None:
                    request["Environment"] = function_change.configurations.environment
                response = await lambda_client.update_function_configuration(**request)
                await wait_for_lambda_update_to_finish(lambda_client, function_name, response)

            versions = [d for d in dependencies if d.resource_type == LAMBDA_VERSION_RESOURCE_TYPE]
            if not versions:
                return

            version = await lambda_client.publish_version(FunctionName=function_name)
            aliases = [d for d in dependencies if d.resource_type == LAMBDA_ALIAS_RESOURCE_TYPE]
            await asyncio.gather(
                *(
                    lambda_client.update_alias(
                        FunctionName=function_name,
                        Name=alias.physical_name,
                        FunctionVersion=version["Version"],
                    )
                    for alias in aliases
                )
            )

        ret.append(
            HotswapOperation(
                service="lambda",
                change=HotswappableChange(
                    cause=change,
                    resources=[
                        AffectedResource(
                            logical_id=logical_id,
                            resource_type=change.resource_type,
                            physical_name=function_name,
                            metadata=evaluate_cfn_template.metadata_for(logical_id),
                        ),
                        *dependencies,
                    ],
                ),
                apply=_apply,
            )
        )
        return ret


async def _noop(sdk) -> None:
    pass
