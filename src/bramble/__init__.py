"""Bramble: response templating for stub-based HTTP mock servers."""

from bramble.transformer import ResponseTemplateTransformer

__version__ = "0.1.0"

__all__ = ["ResponseTemplateTransformer", "__version__"]
