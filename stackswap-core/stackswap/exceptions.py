class ToolkitError(Exception):
    """
    An error caused by the user's input or environment, which is reported to the user without a stack trace.
    """

    def __init__(self, message: str, name: str = None) -> None:
        super().__init__(message)
        self.message = message
        self.name = name or "ToolkitError"

    def __str__(self):
        return self.message


class CfnEvaluationException(ToolkitError):
    """Raised when an intrinsic function or reference in a template cannot be evaluated."""

    def __init__(self, message: str) -> None:
        super().__init__(message, name="CfnEvaluationException")


class NoHotswapDetector(Exception):
    def __init__(self, resource_type: str) -> None:
        super().__init__(f"No hotswap detector registered for resource type {resource_type}")
        self.resource_type = resource_type
