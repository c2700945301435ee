import asyncio

import pytest

from stackswap.cloudformation.evaluate import references_logical_id
from stackswap.exceptions import CfnEvaluationException

TEMPLATE = {
    "Parameters": {
        "Stage": {"Type": "String", "Default": "dev"},
        "Name": {"Type": "String"},
    },
    "Resources": {
        "Role": {"Type": "AWS::IAM::Role"},
        "Function": {
            "Type": "AWS::Lambda::Function",
            "Properties": {
                "Role": {"Fn::GetAtt": ["Role", "Arn"]},
                "Environment": {"Variables": {"TABLE": {"Ref": "Table"}}},
            },
            "Metadata": {"aws:cdk:path": "Stack/Function/Resource"},
        },
        "Table": {"Type": "AWS::DynamoDB::Table"},
        "Version": {
            "Type": "AWS::Lambda::Version",
            "Properties": {"FunctionName": {"Fn::Sub": "${Function}"}},
        },
    },
}

STACK_RESOURCES = {
    "Role": "my-role",
    "Function": "my-function",
    "Table": "my-table",
    "Nested": ("my-nested-stack", "AWS::CloudFormation::Stack"),
}


@pytest.fixture
def evaluate(create_evaluate):
    return create_evaluate(TEMPLATE, STACK_RESOURCES, parameters={"Name": "given"})


def _evaluate(evaluate, expression):
    return asyncio.run(evaluate.evaluate_cfn_expression(expression))


class TestEvaluateCfnExpression:
    def test_plain_values(self, evaluate):
        assert _evaluate(evaluate, {"a": [1, "b"]}) == {"a": [1, "b"]}

    def test_ref_parameters(self, evaluate):
        assert _evaluate(evaluate, {"Ref": "Stage"}) == "dev"
        assert _evaluate(evaluate, {"Ref": "Name"}) == "given"

    def test_ref_pseudo_parameters(self, evaluate):
        assert _evaluate(evaluate, {"Ref": "AWS::Region"}) == "us-east-1"
        assert _evaluate(evaluate, {"Ref": "AWS::StackName"}) == "test-stack"
        assert _evaluate(evaluate, {"Ref": "AWS::Partition"}) == "aws"

    def test_ref_resource(self, evaluate):
        assert _evaluate(evaluate, {"Ref": "Function"}) == "my-function"

    def test_ref_unknown(self, evaluate):
        with pytest.raises(CfnEvaluationException) as e:
            _evaluate(evaluate, {"Ref": "Missing"})
        assert str(e.value) == "Parameter or resource 'Missing' could not be found for evaluation"

    def test_get_att_arn(self, evaluate):
        assert (
            _evaluate(evaluate, {"Fn::GetAtt": ["Role", "Arn"]})
            == "arn:aws:iam::123456789012:role/my-role"
        )
        assert (
            _evaluate(evaluate, {"Fn::GetAtt": "Function.Arn"})
            == "arn:aws:lambda:us-east-1:123456789012:function:my-function"
        )
        assert (
            _evaluate(evaluate, {"Fn::GetAtt": ["Table", "Arn"]})
            == "arn:aws:dynamodb:us-east-1:123456789012:table/my-table"
        )

    def test_get_att_unsupported_attribute(self, evaluate):
        with pytest.raises(CfnEvaluationException):
            _evaluate(evaluate, {"Fn::GetAtt": ["Function", "SnapStartResponse"]})

    def test_get_att_nested_stack_output(self, evaluate, sdk):
        sdk.cloudformation.describe_stacks.return_value = {
            "Stacks": [{"Outputs": [{"OutputKey": "QueueUrl", "OutputValue": "https://queue"}]}]
        }
        assert _evaluate(evaluate, {"Fn::GetAtt": ["Nested", "Outputs.QueueUrl"]}) == "https://queue"
        sdk.cloudformation.describe_stacks.assert_awaited_with(StackName="my-nested-stack")

    def test_join_split_select(self, evaluate):
        assert _evaluate(evaluate, {"Fn::Join": ["-", ["a", {"Ref": "Stage"}]]}) == "a-dev"
        assert _evaluate(evaluate, {"Fn::Split": [",", "a,b"]}) == ["a", "b"]
        assert _evaluate(evaluate, {"Fn::Select": ["1", ["a", "b"]]}) == "b"

    def test_sub(self, evaluate):
        assert (
            _evaluate(evaluate, {"Fn::Sub": "${AWS::Region}/${Stage}/${Function}/${!Literal}"})
            == "us-east-1/dev/my-function/${Literal}"
        )
        assert _evaluate(evaluate, {"Fn::Sub": ["${Greeting} ${Name}", {"Greeting": "hi"}]}) == (
            "hi given"
        )
        assert (
            _evaluate(evaluate, {"Fn::Sub": "${Role.Arn}"})
            == "arn:aws:iam::123456789012:role/my-role"
        )

    def test_base64(self, evaluate):
        assert _evaluate(evaluate, {"Fn::Base64": "hello"}) == "aGVsbG8="

    def test_import_value(self, evaluate, sdk):
        sdk.cloudformation.list_exports.side_effect = [
            {"Exports": [{"Name": "other", "Value": "x"}], "NextToken": "next"},
            {"Exports": [{"Name": "shared-bucket", "Value": "bucket-name"}]},
        ]
        assert _evaluate(evaluate, {"Fn::ImportValue": "shared-bucket"}) == "bucket-name"
        # cached exports are not looked up again
        assert _evaluate(evaluate, {"Fn::ImportValue": "other"}) == "x"
        assert sdk.cloudformation.list_exports.await_count == 2

    def test_unsupported_function(self, evaluate):
        with pytest.raises(CfnEvaluationException) as e:
            _evaluate(evaluate, {"Fn::If": ["Cond", "a", "b"]})
        assert str(e.value) == "CloudFormation function Fn::If is not supported"

    def test_no_value_is_removed(self, evaluate):
        assert _evaluate(evaluate, {"a": {"Ref": "AWS::NoValue"}, "b": 1}) == {"b": 1}
        assert _evaluate(evaluate, {"Ref": "AWS::NoValue"}) is None

    def test_stack_resources_are_listed_once(self, evaluate, sdk):
        _evaluate(evaluate, {"Ref": "Function"})
        _evaluate(evaluate, {"Ref": "Table"})
        assert sdk.cloudformation.list_stack_resources.await_count == 1


class TestTemplateLookups:
    def test_find_references_to(self, evaluate):
        references = evaluate.find_references_to("Function")
        assert [r.logical_id for r in references] == ["Version"]

        references = evaluate.find_references_to("Role")
        assert [(r.logical_id, r.type) for r in references] == [
            ("Function", "AWS::Lambda::Function")
        ]

    def test_references_logical_id(self):
        assert references_logical_id({"Ref": "A"}, "A")
        assert references_logical_id({"Fn::GetAtt": ["A", "Arn"]}, "A")
        assert references_logical_id({"Fn::Sub": "arn:${A.Arn}/x"}, "A")
        assert not references_logical_id({"Fn::Sub": "arn:${AB}"}, "A")
        assert not references_logical_id({"Ref": "B"}, "A")

    def test_establish_resource_physical_name(self, evaluate):
        assert asyncio.run(evaluate.establish_resource_physical_name("Function", "named")) == "named"
        assert (
            asyncio.run(evaluate.establish_resource_physical_name("Function", None))
            == "my-function"
        )
        # names that cannot be evaluated are looked up in the stack
        assert (
            asyncio.run(evaluate.establish_resource_physical_name("Function", {"Ref": "Missing"}))
            == "my-function"
        )

    def test_find_logical_id_for_physical_name(self, evaluate):
        assert asyncio.run(evaluate.find_logical_id_for_physical_name("my-table")) == "Table"
        assert asyncio.run(evaluate.find_logical_id_for_physical_name("unknown")) is None

    def test_metadata_for(self, evaluate):
        assert evaluate.metadata_for("Function").construct_path == "Stack/Function/Resource"
        assert evaluate.metadata_for("Role") is None
        assert evaluate.metadata_for("Unknown") is None

    def test_get_resource_property(self, evaluate):
        assert evaluate.get_resource_property("Version", "FunctionName") == {
            "Fn::Sub": "${Function}"
        }

    def test_nested_evaluation_context(self, evaluate):
        nested = asyncio.run(
            evaluate.create_nested_evaluate_cloud_formation_template(
                "my-nested-stack",
                {"Parameters": {"Param": {"Type": "String"}}, "Resources": {}},
                {"Param": {"Ref": "Stage"}},
            )
        )
        assert nested.stack_name == "my-nested-stack"
        assert asyncio.run(nested.evaluate_cfn_expression({"Ref": "Param"})) == "dev"
        assert asyncio.run(nested.evaluate_cfn_expression({"Ref": "AWS::StackName"})) == (
            "my-nested-stack"
        )
