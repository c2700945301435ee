import asyncio
import logging
from typing import Optional

from botocore.exceptions import ClientError

from stackswap import config
from stackswap.exceptions import ToolkitError
from stackswap.hotswap.common import (
    AffectedResource,
    HotswapOperation,
    HotswappableChange,
    NonHotswappableReason,
    classify_changes,
    non_hotswappable_change,
)
from stackswap.hotswap.registry import HotswapDetector, register_detector
from stackswap.utils.asyncio import retry_with_backoff, run_sync
from stackswap.utils.objects import transform_object_keys
from stackswap.utils.strings import first_char_to_lower, to_str

LOG = logging.getLogger(__name__)

HOTSWAPPABLE_APPSYNC_PROPERTIES = [
    "RequestMappingTemplate",
    "RequestMappingTemplateS3Location",
    "ResponseMappingTemplate",
    "ResponseMappingTemplateS3Location",
    "Code",
    "CodeS3Location",
    "Definition",
    "DefinitionS3Location",
    "Expires",
]

# request parameters accepted by the update calls, the remaining resource properties are dropped
UPDATE_RESOLVER_PARAMETERS = {
    "apiId",
    "typeName",
    "fieldName",
    "dataSourceName",
    "requestMappingTemplate",
    "responseMappingTemplate",
    "kind",
    "pipelineConfig",
    "syncConfig",
    "cachingConfig",
    "maxBatchSize",
    "runtime",
    "code",
    "metricsConfig",
}
UPDATE_FUNCTION_PARAMETERS = {
    "apiId",
    "name",
    "description",
    "dataSourceName",
    "requestMappingTemplate",
    "responseMappingTemplate",
    "functionVersion",
    "syncConfig",
    "maxBatchSize",
    "runtime",
    "code",
}
START_SCHEMA_CREATION_PARAMETERS = {"apiId", "definition"}
UPDATE_API_KEY_PARAMETERS = {"apiId", "id", "description", "expires"}

# seconds between two polls of the schema creation status
SCHEMA_CREATION_POLL_DELAY = 1.0
# seconds to wait before retrying a concurrently modified function, doubling on every retry
CONCURRENT_MODIFICATION_BACKOFF = 1.0


def _select(request: dict, parameters: set[str]) -> dict:
    return {key: value for key, value in request.items() if key in parameters and value is not None}


def is_concurrent_modification(error: Exception) -> bool:
    return (
        isinstance(error, ClientError)
        and error.response.get("Error", {}).get("Code") == "ConcurrentModificationException"
    )


async def fetch_file_from_s3(s3_url: str, sdk) -> str:
    # s3://<bucket>/<key>
    s3_path_parts = s3_url.split("/")
    bucket = s3_path_parts[2]
    key = "/".join(s3_path_parts[3:])
    response = await sdk.s3.get_object(Bucket=bucket, Key=key)
    return to_str(await run_sync(response["Body"].read))


@register_detector(
    "AWS::AppSync::Resolver",
    "AWS::AppSync::FunctionConfiguration",
    "AWS::AppSync::GraphQLSchema",
    "AWS::AppSync::ApiKey",
)
class AppSyncDetector(HotswapDetector):
    """
    Hotswaps the mapping templates and code of AppSync resolvers and functions, GraphQL schemas, and the
    expiry of API keys. Templates and code stored in S3 are fetched and sent inline.
    """

    async def detect(self, logical_id, change, evaluate_cfn_template, hotswap_property_overrides):
        resource_type = change.resource_type
        is_resolver = resource_type == "AWS::AppSync::Resolver"
        is_function = resource_type == "AWS::AppSync::FunctionConfiguration"

        ret = []
        classified_changes = classify_changes(change, HOTSWAPPABLE_APPSYNC_PROPERTIES)
        classified_changes.report_non_hotswappable_property_changes(ret)

        if not classified_changes.names_of_hotswappable_props:
            return ret

        new_properties = change.new_value.get("Properties") or {}
        arn = await evaluate_cfn_template.establish_resource_physical_name(
            logical_id, new_properties.get("Name") if is_function else None
        )
        physical_name: Optional[str] = arn
        if is_resolver and arn:
            # arn:<partition>:appsync:<region>:<account>:apis/<api id>/types/<type>/resolvers/<field>
            arn_parts = arn.split("/")
            physical_name = f"{arn_parts[3]}.{arn_parts[5]}" if len(arn_parts) > 5 else None

        if not physical_name:
            ret.append(
                non_hotswappable_change(
                    change,
                    NonHotswappableReason.PROPERTIES,
                    f"could not determine the physical name of {resource_type} '{logical_id}'",
                    classified_changes.hotswappable_props,
                )
            )
            return ret

        async def _apply(sdk) -> None:
            sdk_properties = {
                **(change.old_value.get("Properties") or {}),
                "Definition": new_properties.get("Definition"),
                "DefinitionS3Location": new_properties.get("DefinitionS3Location"),
                "RequestMappingTemplate": new_properties.get("RequestMappingTemplate"),
                "RequestMappingTemplateS3Location": new_properties.get(
                    "RequestMappingTemplateS3Location"
                ),
                "ResponseMappingTemplate": new_properties.get("ResponseMappingTemplate"),
                "ResponseMappingTemplateS3Location": new_properties.get(
                    "ResponseMappingTemplateS3Location"
                ),
                "Code": new_properties.get("Code"),
                "CodeS3Location": new_properties.get("CodeS3Location"),
                "Expires": new_properties.get("Expires"),
            }
            evaluated_properties = await evaluate_cfn_template.evaluate_cfn_expression(
                sdk_properties
            )
            request = transform_object_keys(evaluated_properties, first_char_to_lower)

            # the API only takes inline templates and code
            for name in ("requestMappingTemplate", "responseMappingTemplate", "definition", "code"):
                s3_location = request.pop(f"{name}S3Location", None)
                if s3_location:
                    request[name] = await fetch_file_from_s3(s3_location, sdk)

            appsync = sdk.appsync
            if is_resolver:
                await appsync.update_resolver(**_select(request, UPDATE_RESOLVER_PARAMETERS))
            elif is_function:
                await self._update_function(appsync, physical_name, request)
            elif resource_type == "AWS::AppSync::GraphQLSchema":
                await self._update_schema(appsync, request)
            else:
                if not request.get("id"):
                    # the key ID is optional in the template but required by the API
                    arn_parts = physical_name.split("/")
                    if len(arn_parts) == 4:
                        request["id"] = arn_parts[3]
                await appsync.update_api_key(**_select(request, UPDATE_API_KEY_PARAMETERS))

        ret.append(
            HotswapOperation(
                service="appsync",
                change=HotswappableChange(
                    cause=change,
                    resources=[
                        AffectedResource(
                            logical_id=logical_id,
                            resource_type=resource_type,
                            physical_name=physical_name,
                            metadata=evaluate_cfn_template.metadata_for(logical_id),
                        )
                    ],
                ),
                apply=_apply,
            )
        )
        return ret

    async def _update_function(self, appsync, function_name: str, request: dict) -> None:
        # the function version only applies to VTL templates, the runtime only to JS code
        if request.get("code"):
            request.pop("functionVersion", None)
        else:
            request.pop("runtime", None)

        function_id = None
        kwargs = {"apiId": request["apiId"]}
        while function_id is None:
            response = await appsync.list_functions(**kwargs)
            for function in response.get("functions", []):
                if function.get("name") == function_name:
                    function_id = function.get("functionId")
                    break
            if not response.get("nextToken"):
                break
            kwargs["nextToken"] = response["nextToken"]

        params = {**_select(request, UPDATE_FUNCTION_PARAMETERS), "functionId": function_id}
        # updating multiple functions at the same time, or along with the schema, fails with a conflict
        await retry_with_backoff(
            lambda: appsync.update_function(**params),
            retries=config.HOTSWAP_APPSYNC_RETRY_ATTEMPTS,
            backoff=CONCURRENT_MODIFICATION_BACKOFF,
            should_retry=is_concurrent_modification,
        )

    async def _update_schema(self, appsync, request: dict) -> None:
        response = await appsync.start_schema_creation(
            **_select(request, START_SCHEMA_CREATION_PARAMETERS)
        )
        while response.get("status") in ("PROCESSING", "DELETING"):
            await asyncio.sleep(SCHEMA_CREATION_POLL_DELAY)
            response = await appsync.get_schema_creation_status(apiId=request["apiId"])
        if response.get("status") == "FAILED":
            raise ToolkitError(response.get("details") or "Schema creation failed")
