"""Custom exceptions for promptfit."""


class PromptFitError(Exception):
    """Base exception for all promptfit errors."""


class ConfigError(PromptFitError):
    """Configuration-related errors."""


class InvalidTreeError(PromptFitError):
    """Structural violation in a declared node tree."""


class RenderCancelledError(PromptFitError):
    """The render request was cancelled before it completed."""


class RenderError(PromptFitError):
    """Internal consistency failure while rendering."""


class MeasurementError(PromptFitError):
    """Raised when the injected measurer fails for some content."""

    def __init__(self, content_id: str, cause: BaseException | str):
        self.content_id = content_id
        self.cause = cause
        super().__init__(f"Could not measure content '{content_id}': {cause}")


class HookError(PromptFitError):
    """A prepare or expand hook failed and the request was aborted."""

    def __init__(self, node_label: str, phase: str, cause: BaseException):
        self.node_label = node_label
        self.phase = phase
        self.cause = cause
        super().__init__(f"{phase} hook of '{node_label}' failed: {cause}")
