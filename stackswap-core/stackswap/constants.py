# strings to indicate truthy values
TRUE_STRINGS = ("1", "true", "True")
# strings with valid log levels for STACKSWAP_LOG
LOG_LEVELS = ("trace", "debug", "info", "warn", "error", "warning")
LOG_LEVEL_TRACE = "trace"

# user agent marker prefix appended to SDK calls made by a hotswap operation
HOTSWAP_USER_AGENT_PREFIX = "stackswap-hotswap"

# pseudo parameter used in templates to remove a property
PLACEHOLDER_AWS_NO_VALUE = "__aws_no_value__"

# resource types with special meaning for the hotswap engine
CFN_STACK_RESOURCE_TYPE = "AWS::CloudFormation::Stack"
CDK_METADATA_RESOURCE_TYPE = "AWS::CDK::Metadata"
CDK_BUCKET_DEPLOYMENT_CFN_TYPE = "Custom::CDKBucketDeployment"
ECS_SERVICE_RESOURCE_TYPE = "AWS::ECS::Service"
IAM_POLICY_RESOURCE_TYPE = "AWS::IAM::Policy"
LAMBDA_FUNCTION_RESOURCE_TYPE = "AWS::Lambda::Function"
LAMBDA_VERSION_RESOURCE_TYPE = "AWS::Lambda::Version"
LAMBDA_ALIAS_RESOURCE_TYPE = "AWS::Lambda::Alias"

# metadata keys written by the CDK into synthesized templates
METADATA_CONSTRUCT_PATH = "aws:cdk:path"
METADATA_ASSET_PATH = "aws:asset:path"
