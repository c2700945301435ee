"""Imports the modules of all built-in detectors, which register themselves in the detector registry."""

from stackswap.constants import CDK_METADATA_RESOURCE_TYPE
from stackswap.hotswap import (  # noqa: F401
    appsync_mapping_templates,
    code_build_projects,
    ecs_services,
    iam_policies,
    lambda_functions,
    s3_bucket_deployments,
    stepfunctions_state_machines,
)
from stackswap.hotswap.registry import IgnoreChangeDetector, register_detector

register_detector(CDK_METADATA_RESOURCE_TYPE)(IgnoreChangeDetector)
