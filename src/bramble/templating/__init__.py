"""Template compilation, caching and context-model assembly."""

from bramble.templating.cache import CacheKeyKind, TemplateCache, TemplateCacheKey
from bramble.templating.engine import CompiledTemplate, TemplateEngine
from bramble.templating.model import RESERVED_NAMES, RequestTemplateModel, build_model

__all__ = [
    "RESERVED_NAMES",
    "CacheKeyKind",
    "CompiledTemplate",
    "RequestTemplateModel",
    "TemplateCache",
    "TemplateCacheKey",
    "TemplateEngine",
    "build_model",
]
