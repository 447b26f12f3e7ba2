from __future__ import annotations


class PynanocoderError(RuntimeError):
    pass


class ConfigError(PynanocoderError):
    pass


class ProviderError(PynanocoderError):
    pass


class DuplicateToolName(PynanocoderError):
    def __init__(self, name: str):
        super().__init__(f"Tool already registered: {name}")
        self.name = name


class ToolNotFound(PynanocoderError, KeyError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


# What the model is told when it calls a name that is not registered.
UnknownTool = ToolNotFound


class ToolValidationError(PynanocoderError):
    """Raised by tools whose preconditions fail; the message goes back to the model."""


class ToolExecutionError(PynanocoderError):
    """Raised by a tool body to report a failure without a traceback."""


class TurnCancelled(PynanocoderError):
    def __init__(self, message: str = "Turn cancelled"):
        super().__init__(message)
