"""Markdown + LaTeX rendering of question text for taker-facing views.

The renderer only produces HTML; math is left as ``$...$`` source for MathJax
in whatever client displays the fragment. Raw HTML in question text is not
passed through.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt

_EMPTY_FRAGMENT = "<p><em>No content provided.</em></p>"


@dataclass(slots=True)
class MarkdownMathRenderer:
    """Converts markdown-with-math into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        """Render a markdown string into an HTML fragment."""
        sanitized = (markdown_text or "").strip()
        if not sanitized:
            return _EMPTY_FRAGMENT
        return self._markdown.render(sanitized)

    def render_inline(self, markdown_text: str) -> str:
        """Render short text such as an MCQ choice without a wrapping paragraph."""
        sanitized = (markdown_text or "").strip()
        if not sanitized:
            return ""
        return self._markdown.renderInline(sanitized)


renderer = MarkdownMathRenderer()
# MarkdownIt is safe for concurrent read-only renders, so the API handlers share this instance.
