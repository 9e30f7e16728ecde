from typing import Optional


class QuarryError(Exception):
    pass


class DefinitionError(QuarryError):
    """A perception definition's filter or extractor raised."""

    def __init__(self, definition_id: str, stage: str, cause: BaseException):
        self.definition_id = definition_id
        self.stage = stage
        self.cause = cause
        super().__init__(f"{definition_id}: {stage} raised {type(cause).__name__}: {cause}")


class ScriptError(QuarryError):
    pass


class ScriptSyntaxError(ScriptError):
    def __init__(self, message: str, lineno: Optional[int] = None):
        self.lineno = lineno
        super().__init__(message)


class ScriptRuntimeError(ScriptError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"{type(cause).__name__}: {cause}")


class ScriptTimeout(ScriptError):
    def __init__(self, timeout_ms: float):
        self.timeout_ms = timeout_ms
        super().__init__(f"Script execution timed out after {timeout_ms:g}ms")


class EngineBusyError(ScriptError):
    pass


class PlannerError(QuarryError):
    pass


class UnknownToolError(PlannerError):
    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"Unknown tool: {tool}")


class ActionLimitExceeded(PlannerError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Action limit exceeded: max {limit} actions per turn")


class ModelTransportError(QuarryError):
    def __init__(self, message: str, partial_text: str = ""):
        self.partial_text = partial_text
        super().__init__(message)
