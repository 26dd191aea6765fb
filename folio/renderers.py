"""Body markup renderers for Folio.

Each renderer converts one kind of document body to HTML before the body is
substituted into its layout.

Key classes:
- MarkdownRenderer: Renders Markdown to HTML with syntax highlighting.
- HTMLRenderer: Passes through HTML content.
- RendererRegistry: Picks the renderer for a source file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

import mistune
from markupsafe import escape
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .utils import is_html, is_markdown

_TAG_RE = re.compile(r"<[^>]+>")

MARKDOWN_PLUGINS = ["strikethrough", "footnotes", "table", "url"]


@dataclass(frozen=True)
class Heading:
    """A heading extracted from rendered Markdown for TOC generation.

    Attributes:
        id: Anchor ID for the heading (URL-friendly slug).
        text: The plain text content of the heading.
        level: Heading level (1-6).
    """

    id: str
    text: str
    level: int


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text.

    Args:
        text: The heading text, possibly containing inline HTML.

    Returns:
        URL-friendly slug suitable for anchor links.
    """
    slug = _TAG_RE.sub("", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-") or "section"


class _HighlightRenderer(mistune.HTMLRenderer):
    """Markdown renderer with heading anchors and Pygments code blocks.

    Attributes:
        headings: Headings seen so far, in document order.
    """

    def __init__(self):
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        """Render a heading with a unique id and record it for the TOC."""
        base_id = _generate_heading_id(text)

        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        plain = " ".join(_TAG_RE.sub("", text).split())
        self.headings.append(Heading(id=heading_id, text=plain, level=level))

        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a fenced code block, highlighted when the language is known.

        Args:
            code: The code content.
            info: Info string of the fence; its first word is the language.

        Returns:
            HTML string with highlighted or escaped code.
        """
        lang = info.split()[0] if info and info.strip() else None
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
                return highlight(code, lexer, formatter)
        lang_class = f' class="language-{escape(lang)}"' if lang else ""
        return f"<pre><code{lang_class}>{escape(code)}</code></pre>\n"


class MarkdownRenderer:
    """Renders Markdown content to HTML.

    A fresh mistune parser is created per call so renders never share state
    across worker threads.
    """

    @property
    def source_type(self) -> str:
        return "markdown"

    def can_render(self, path: Path) -> bool:
        return is_markdown(path)

    def render(self, content: str) -> tuple[str, list[Heading]]:
        """Render Markdown content to HTML.

        Args:
            content: Markdown source content.

        Returns:
            Tuple of (rendered HTML, list of Heading objects).
        """
        renderer = _HighlightRenderer()
        markdown = mistune.create_markdown(renderer=renderer, plugins=MARKDOWN_PLUGINS)
        html = markdown(content)
        return html, list(renderer.headings)


class HTMLRenderer:
    """Passes through HTML content unchanged."""

    @property
    def source_type(self) -> str:
        return "html"

    def can_render(self, path: Path) -> bool:
        return is_html(path)

    def render(self, content: str) -> tuple[str, list[Heading]]:
        return content, []


class RendererRegistry:
    """Registry for body renderers.

    Renderers are consulted in registration order; the first one that
    accepts a path wins.
    """

    def __init__(self):
        self._renderers: list = []
        self.register(MarkdownRenderer())
        self.register(HTMLRenderer())

    def register(self, renderer) -> None:
        """Register a new renderer.

        Args:
            renderer: A ContentRenderer implementation.
        """
        self._renderers.append(renderer)

    def get_renderer(self, path: Path):
        """Get the appropriate renderer for a file.

        Args:
            path: Path to the source file.

        Returns:
            The first renderer that can handle the file, or None.
        """
        for renderer in self._renderers:
            if renderer.can_render(path):
                return renderer
        return None

    def can_render(self, path: Path) -> bool:
        return self.get_renderer(path) is not None


default_renderer_registry = RendererRegistry()
