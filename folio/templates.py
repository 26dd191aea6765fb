"""Template resolution and page rendering for Folio.

Layouts live in ``_layouts/`` and partials in ``_partials/`` of the source
directory; a small set of built-in templates fills in when the site does not
provide its own. Before a layout is used, the resolver walks every template
it includes, imports or extends, so an include cycle is reported as an error
instead of recursing inside Jinja2.

Key classes:
- TemplateResolver: Maps layout names to checked template trees.
- Renderer: Turns a document and its template into a Page.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jinja2 import (
    ChoiceLoader,
    DictLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    Template,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
    meta,
    select_autoescape,
)
from markupsafe import Markup, escape

from .collections import PageCollection, SiteIndex
from .content import LAYOUT_SUFFIXES, Document, Page
from .errors import (
    BuildError,
    CyclicIncludeError,
    UnboundVariableError,
    UnknownLayoutError,
    UnknownPartialError,
)
from .renderers import Heading, RendererRegistry, default_renderer_registry
from .utils import join_root_url

logger = logging.getLogger(__name__)

__all__ = [
    "LISTING_TEMPLATE",
    "Renderer",
    "ResolvedTemplate",
    "TemplateNode",
    "TemplateResolver",
    "render_toc",
]

LISTING_TEMPLATE = "listing.html"

BUILTIN_TEMPLATES = {
    "default.html": """<!DOCTYPE html>
<html lang="{{ site.language | default('en') }}">
<head>
<meta charset="utf-8">
<title>{% if site.title %}{{ page.title }} | {{ site.title }}{% else %}{{ page.title }}{% endif %}</title>
</head>
<body>
<main>
{{ content }}
</main>
</body>
</html>
""",
    LISTING_TEMPLATE: """<h1>{{ page.title }}</h1>
{% if page.kind == "tags" %}<ul class="tags">
{% for name, tagged in tags.items() %}  <li><a href="{{ url_for(tag_url(name)) }}">{{ name }}</a> ({{ tagged | length }})</li>
{% endfor %}</ul>
{% else %}<ul class="entries">
{% for entry in entries %}  <li><time datetime="{{ entry.date.strftime('%Y-%m-%d') }}">{{ entry.date.strftime('%Y-%m-%d') }}</time> <a href="{{ url_for(entry.url) }}">{{ entry.title }}</a></li>
{% endfor %}</ul>
{% endif %}""",
}
BUILTIN_LAYOUTS = frozenset({"default"})


def render_toc(toc: list[Heading]) -> Markup:
    """Render a table of contents as nested HTML from headings.

    Generates properly nested ``<ul><li><a href="#id">text</a></li></ul>``
    structure based on heading levels.

    Args:
        toc: Headings of a rendered document.

    Returns:
        Markup-safe HTML string of the nested TOC, or empty Markup if no headings.
    """
    if not toc:
        return Markup("")

    html_parts: list[str] = []
    level_stack: list[int] = []

    for heading in toc:
        level = heading.level

        # Close nested lists if going to a shallower level
        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        elif not level_stack or level > level_stack[-1]:  # pragma: no branch
            html_parts.append("<ul>")
            level_stack.append(level)

        html_parts.append(f'<li><a href="#{escape(heading.id)}">{escape(heading.text)}</a>')

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


@dataclass(frozen=True)
class TemplateNode:
    """A template and the templates it pulls in.

    Attributes:
        name: Template name as known to the loader.
        path: File the template was loaded from.
        includes: Child templates in order of first reference.
    """

    name: str
    path: Path
    includes: tuple[TemplateNode, ...] = ()

    def walk(self):
        """Yield this node and every descendant, depth first."""
        yield self
        for child in self.includes:
            yield from child.walk()


@dataclass(frozen=True)
class ResolvedTemplate:
    """A layout checked for missing partials and include cycles.

    Attributes:
        layout: Layout name that was requested.
        root: Include tree rooted at the layout template.
        template: Compiled Jinja2 template.
    """

    layout: str
    root: TemplateNode
    template: Template

    @property
    def path(self) -> Path:
        return self.root.path


class TemplateResolver:
    """Resolves layouts and partials for one source directory.

    Instances are passed explicitly to whatever needs templates, so separate
    builds never share a registry.

    Attributes:
        site_dir: Source directory.
        layout_dir: Directory containing layouts.
        partial_dir: Directory containing partials.
        env: Jinja2 environment used for every template of the site.
    """

    def __init__(self, site_dir: Path, default_layout: str = "default"):
        self.site_dir = site_dir
        self.layout_dir = site_dir / "_layouts"
        self.partial_dir = site_dir / "_partials"
        self.default_layout = default_layout
        self.env = Environment(
            loader=ChoiceLoader(
                [
                    FileSystemLoader([str(self.layout_dir), str(self.partial_dir)]),
                    DictLoader(BUILTIN_TEMPLATES),
                ]
            ),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        self._nodes: dict[str, TemplateNode] = {}
        self._resolved: dict[str, ResolvedTemplate] = {}
        self._paths: dict[str, Path] = {}
        self._lock = threading.RLock()

    def known_layouts(self) -> list[str]:
        """Return the names of every available layout, sorted."""
        names = set(BUILTIN_LAYOUTS)
        if self.layout_dir.is_dir():
            for path in self.layout_dir.rglob("*"):
                if not path.is_file():
                    continue
                rel = path.relative_to(self.layout_dir).as_posix()
                for suffix in LAYOUT_SUFFIXES:
                    if suffix and rel.endswith(suffix):
                        rel = rel[: -len(suffix)]
                        break
                names.add(rel)
        return sorted(names)

    def has_layout(self, layout: str) -> bool:
        return self._layout_template_name(layout) is not None

    def _layout_template_name(self, layout: str) -> str | None:
        for suffix in LAYOUT_SUFFIXES:
            candidate = f"{layout}{suffix}"
            if (self.layout_dir / candidate).is_file():
                return candidate
        if layout in BUILTIN_LAYOUTS:
            return f"{layout}.html"
        return None

    def resolve(self, layout: str, referrer: Path | None = None) -> ResolvedTemplate:
        """Resolve a layout name to a checked template tree.

        Args:
            layout: Layout name without suffix (e.g. ``post`` or ``posts/happy``).
            referrer: Document asking for the layout, named in errors.

        Returns:
            The resolved template.

        Raises:
            UnknownLayoutError: If no layout has that name.
            UnknownPartialError: If the layout includes a missing template.
            CyclicIncludeError: If the layout transitively includes itself.
            BuildError: If a template names an include by an expression.
        """
        with self._lock:
            cached = self._resolved.get(layout)
            if cached is not None:
                return cached
            name = self._layout_template_name(layout)
            if name is None:
                known = ", ".join(self.known_layouts())
                raise UnknownLayoutError(
                    referrer or self.layout_dir,
                    f"unknown layout '{layout}' (known layouts: {known})",
                )
            resolved = ResolvedTemplate(
                layout=layout,
                root=self._expand(name, ()),
                template=self._compile(name),
            )
            self._resolved[layout] = resolved
            return resolved

    def resolve_template(self, name: str) -> TemplateNode:
        """Check a template by its full name (e.g. a partial) and return its tree."""
        with self._lock:
            return self._expand(name, ())

    def get_template(self, name: str) -> Template:
        """Return a compiled template after checking its include tree."""
        with self._lock:
            self._expand(name, ())
            return self._compile(name)

    def _compile(self, name: str) -> Template:
        try:
            return self.env.get_template(name)
        except TemplateSyntaxError as exc:
            raise BuildError(
                self._path_for(name, exc.filename),
                f"Template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc

    def _path_for(self, name: str, filename: str | None) -> Path:
        if filename:
            return Path(filename)
        return Path("<builtin>") / name

    def _expand(self, name: str, chain: tuple[str, ...]) -> TemplateNode:
        if name in chain:
            cycle = chain[chain.index(name) :] + (name,)
            raise CyclicIncludeError(self._nodes_path(chain[-1]), cycle)
        cached = self._nodes.get(name)
        if cached is not None:
            return cached

        try:
            source, filename, _ = self.env.loader.get_source(self.env, name)
        except TemplateNotFound as exc:
            if not chain:
                raise UnknownPartialError(
                    self.partial_dir, f"template '{name}' does not exist", exc
                ) from exc
            raise UnknownPartialError(
                self._nodes_path(chain[-1]),
                f"template '{chain[-1]}' includes missing template '{name}'",
                exc,
            ) from exc
        path = self._path_for(name, filename)
        self._paths[name] = path

        try:
            ast = self.env.parse(source, name, filename)
        except TemplateSyntaxError as exc:
            raise BuildError(
                path, f"Template syntax error on line {exc.lineno}: {exc.message}", exc
            ) from exc

        children: list[TemplateNode] = []
        seen: set[str] = set()
        for child in meta.find_referenced_templates(ast):
            if child is None:
                raise BuildError(
                    path,
                    f"template '{name}' includes a template named by an expression; "
                    "include partials by their literal name",
                )
            if child in seen:
                continue
            seen.add(child)
            children.append(self._expand(child, chain + (name,)))

        node = TemplateNode(name=name, path=path, includes=tuple(children))
        self._nodes[name] = node
        logger.debug("Resolved template %s with %d includes", name, len(children))
        return node

    def _nodes_path(self, name: str) -> Path:
        return self._paths.get(name, Path(name))


class Renderer:
    """Renders documents through their resolved templates.

    Rendering is a pure function of the document, the template, the global
    site fields and the site index, so one Renderer can be shared by worker
    threads.

    Undefined template variables are fatal: the environment uses
    StrictUndefined and every UndefinedError becomes an UnboundVariableError.

    Attributes:
        resolver: Template resolver of the site.
        site: Global site fields exposed as ``site``.
        index: Site index exposed as ``pages`` and ``tags``.
    """

    def __init__(
        self,
        resolver: TemplateResolver,
        site: Mapping[str, Any],
        index: SiteIndex,
        renderer_registry: RendererRegistry | None = None,
        tags_dir: str = "tags",
    ):
        self.resolver = resolver
        self.site = site
        self.index = index
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.tags_dir = tags_dir.strip("/")
        self.root_url = str(site.get("root_url") or "")

    def url_for(self, path: str) -> str:
        """Generate a URL for a path, applying root_url if configured."""
        if path.startswith(("http://", "https://", "//")):
            return path
        path = path if path.startswith("/") else f"/{path}"
        if self.root_url:
            return join_root_url(self.root_url, path)
        return path

    def tag_url(self, tag: str) -> str:
        return f"/{self.tags_dir}/{self.index.slug_for(tag)}/"

    def convert_body(self, document: Document) -> tuple[str, list[Heading]]:
        """Convert a document body from its markup to HTML."""
        if document.kind != "document":
            listing = self.resolver.get_template(LISTING_TEMPLATE)
            return listing.render(**self._base_context(document, [])), []
        renderer = self.renderer_registry.get_renderer(document.path)
        if renderer is None:
            return document.body, []
        return renderer.render(document.body)

    def _base_context(self, document: Document, toc: list[Heading]) -> dict[str, Any]:
        return {
            "site": self.site,
            "page": document,
            "toc": toc,
            "pages": self.index.pages,
            "tags": self.index.tags,
            "entries": PageCollection(document.entries),
            "tag": document.tag,
            "url_for": self.url_for,
            "tag_url": self.tag_url,
            "render_toc": render_toc,
        }

    def render(self, document: Document, template: ResolvedTemplate) -> Page:
        """Render a document through its template.

        Args:
            document: Document to render.
            template: Resolved layout of the document.

        Returns:
            The rendered page.

        Raises:
            UnboundVariableError: If a placeholder has no value.
        """
        try:
            body_html, toc = self.convert_body(document)
            context = self._base_context(document, toc)
            html = template.template.render(content=Markup(body_html), **context)
        except UndefinedError as exc:
            raise UnboundVariableError(
                document.path,
                f"undefined variable in layout '{template.layout}' "
                f"({template.path}): {exc.message}",
                exc,
            ) from exc
        return Page(
            url=document.url,
            output_path=document.output_path,
            content=html.encode("utf-8"),
            source=document.path,
            kind=document.kind,
            title=document.title,
        )
