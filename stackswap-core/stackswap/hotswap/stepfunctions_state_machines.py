from stackswap.hotswap.common import (
    AffectedResource,
    HotswapOperation,
    HotswappableChange,
    NonHotswappableReason,
    classify_changes,
    non_hotswappable_change,
)
from stackswap.hotswap.registry import HotswapDetector, register_detector

STATE_MACHINE_ARN_PREFIX = {
    "Fn::Sub": "arn:${AWS::Partition}:states:${AWS::Region}:${AWS::AccountId}:stateMachine:"
}


@register_detector("AWS::StepFunctions::StateMachine")
class StateMachineDetector(HotswapDetector):
    async def detect(self, logical_id, change, evaluate_cfn_template, hotswap_property_overrides):
        ret = []
        classified_changes = classify_changes(change, ["DefinitionString"])
        classified_changes.report_non_hotswappable_property_changes(ret)

        if not classified_changes.names_of_hotswappable_props:
            return ret

        state_machine_name = (change.new_value.get("Properties") or {}).get("StateMachineName")
        if state_machine_name:
            state_machine_arn = await evaluate_cfn_template.evaluate_cfn_expression(
                {"Fn::Join": ["", [STATE_MACHINE_ARN_PREFIX, state_machine_name]]}
            )
        else:
            state_machine_arn = await evaluate_cfn_template.find_physical_name_for(logical_id)

        if not state_machine_arn:
            ret.append(
                non_hotswappable_change(
                    change,
                    NonHotswappableReason.PROPERTIES,
                    f"could not determine the ARN of state machine '{logical_id}'",
                    classified_changes.hotswappable_props,
                )
            )
            return ret

        definition_diff = change.property_updates["DefinitionString"]

        async def _apply(sdk) -> None:
            # optional properties that are not passed are left unchanged
            await sdk.stepfunctions.update_state_machine(
                stateMachineArn=state_machine_arn,
                definition=await evaluate_cfn_template.evaluate_cfn_expression(
                    definition_diff.new_value
                ),
            )

        ret.append(
            HotswapOperation(
                service="stepfunctions-service",
                change=HotswappableChange(
                    cause=change,
                    resources=[
                        AffectedResource(
                            logical_id=logical_id,
                            resource_type=change.resource_type,
                            physical_name=state_machine_arn.split(":")[6],
                            metadata=evaluate_cfn_template.metadata_for(logical_id),
                        )
                    ],
                ),
                apply=_apply,
            )
        )
        return ret
