import logging
import os
from typing import TypeVar, Union

from stackswap.constants import LOG_LEVELS, TRUE_STRINGS

T = TypeVar("T", int, float)

LOG = logging.getLogger(__name__)


def eval_log_type(env_var_name: str) -> Union[str, bool]:
    """Get the log type from environment variable"""
    log_type = os.environ.get(env_var_name, "").lower().strip()
    return log_type if log_type in LOG_LEVELS else False


def is_env_true(env_var_name: str) -> bool:
    """Whether the given environment variable has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() in TRUE_STRINGS


def parse_number_env(env_var_name: str, default: T, cast=int) -> T:
    """Parse the given env variable as a number, falling back to the default if it is unset or invalid."""
    value = os.environ.get(env_var_name, "").strip()
    if not value:
        return default
    try:
        return cast(value)
    except ValueError:
        LOG.warning(
            "Invalid value '%s' for environment variable %s, using default %s",
            value,
            env_var_name,
            default,
        )
        return default


# enable debug logging
DEBUG = is_env_true("DEBUG")

# log level, overrides DEBUG if set
STACKSWAP_LOG = eval_log_type("STACKSWAP_LOG")

# maximum number of hotswap operations applied at the same time
HOTSWAP_MAX_CONCURRENCY = parse_number_env("HOTSWAP_MAX_CONCURRENCY", 10)

# seconds to wait for a Lambda function update to finish
HOTSWAP_LAMBDA_UPDATE_MAX_WAIT = parse_number_env("HOTSWAP_LAMBDA_UPDATE_MAX_WAIT", 300)

# seconds to wait for an ECS service to become stable after its task definition was updated
HOTSWAP_ECS_STABILIZATION_MAX_WAIT = parse_number_env("HOTSWAP_ECS_STABILIZATION_MAX_WAIT", 600)

# seconds between two polls of a waiter
HOTSWAP_WAITER_DELAY = parse_number_env("HOTSWAP_WAITER_DELAY", 5.0, cast=float)

# number of retries for AppSync updates conflicting with a concurrent modification
HOTSWAP_APPSYNC_RETRY_ATTEMPTS = parse_number_env("HOTSWAP_APPSYNC_RETRY_ATTEMPTS", 6)

# log stack traces of failed hotswap operations
HOTSWAP_VERBOSE_ERRORS = is_env_true("HOTSWAP_VERBOSE_ERRORS")


def is_trace_logging_enabled():
    if STACKSWAP_LOG:
        return STACKSWAP_LOG.lower() == "trace"
    return False
