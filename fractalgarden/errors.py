class RenderError(Exception):
    """Base class for failures raised while producing a pixel buffer."""


class BufferConstructionError(RenderError):
    """The output buffer for a render could not be allocated."""


class RenderCancelled(RenderError):
    """A render stopped early because its result was no longer wanted."""


class ConfigError(ValueError):
    """A configuration value is missing, malformed or out of range."""
