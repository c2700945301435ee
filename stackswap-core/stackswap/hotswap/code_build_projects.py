from stackswap.hotswap.common import (
    AffectedResource,
    HotswapOperation,
    HotswappableChange,
    NonHotswappableReason,
    classify_changes,
    non_hotswappable_change,
)
from stackswap.hotswap.registry import HotswapDetector, register_detector
from stackswap.utils.objects import transform_object_keys
from stackswap.utils.strings import first_char_to_lower


def convert_source_cloudformation_key_to_sdk_key(key: str) -> str:
    if key.lower() == "buildspec":
        return key.lower()
    return first_char_to_lower(key)


@register_detector("AWS::CodeBuild::Project")
class CodeBuildProjectDetector(HotswapDetector):
    async def detect(self, logical_id, change, evaluate_cfn_template, hotswap_property_overrides):
        ret = []
        classified_changes = classify_changes(change, ["Source", "Environment", "SourceVersion"])
        classified_changes.report_non_hotswappable_property_changes(ret)

        if not classified_changes.names_of_hotswappable_props:
            return ret

        project_name = await evaluate_cfn_template.establish_resource_physical_name(
            logical_id, (change.new_value.get("Properties") or {}).get("Name")
        )
        if not project_name:
            ret.append(
                non_hotswappable_change(
                    change,
                    NonHotswappableReason.PROPERTIES,
                    f"could not determine the physical name of project '{logical_id}'",
                    classified_changes.hotswappable_props,
                )
            )
            return ret

        async def _apply(sdk) -> None:
            update_project_input = {"name": project_name}
            for name, prop_diff in classified_changes.hotswappable_props.items():
                new_value = await evaluate_cfn_template.evaluate_cfn_expression(prop_diff.new_value)
                match name:
                    case "Source":
                        update_project_input["source"] = transform_object_keys(
                            new_value, convert_source_cloudformation_key_to_sdk_key
                        )
                    case "Environment":
                        update_project_input["environment"] = transform_object_keys(
                            new_value, first_char_to_lower
                        )
                    case "SourceVersion":
                        update_project_input["sourceVersion"] = new_value

            await sdk.codebuild.update_project(**update_project_input)

        ret.append(
            HotswapOperation(
                service="codebuild",
                change=HotswappableChange(
                    cause=change,
                    resources=[
                        AffectedResource(
                            logical_id=logical_id,
                            resource_type=change.resource_type,
                            physical_name=project_name,
                            metadata=evaluate_cfn_template.metadata_for(logical_id),
                        )
                    ],
                ),
                apply=_apply,
            )
        )
        return ret
