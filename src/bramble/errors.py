"""Exception taxonomy for Bramble.

Template-stage failures all derive from :class:`TemplateError` so the
transformer can contain them at a single boundary.
"""

from __future__ import annotations


class BrambleError(Exception):
    """Base class for all Bramble errors."""


class ConfigError(BrambleError):
    """Raised when a configuration or mapping file cannot be loaded."""


class TemplateError(BrambleError):
    """Base class for failures while producing a templated response."""


class CompileError(TemplateError):
    """Raised when a template source is malformed."""


class RenderError(TemplateError):
    """Raised when evaluating a compiled template fails.

    Covers missing helpers, type mismatches inside expressions, failing
    helper functions and disallowed system-key access.
    """


class ModelBuildError(TemplateError):
    """Raised when extra model entries collide with a reserved name."""


class FileAccessError(TemplateError):
    """Raised when a body file cannot be read."""


class BodyFileNotFound(FileAccessError):
    """Raised when a body file does not exist under the file root."""
