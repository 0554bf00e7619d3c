"""Markdown rendering and email templating."""

from .markdown import MarkdownRenderer, RenderStyle, RenderedContent, escape_html, render, to_plain_text
from .wrapper import EmailWrapper, WrapOptions, WrappedEmail

__all__ = [
    "MarkdownRenderer",
    "RenderStyle",
    "RenderedContent",
    "escape_html",
    "render",
    "to_plain_text",
    "EmailWrapper",
    "WrapOptions",
    "WrappedEmail",
]
