"""Content store for Folio.

This module discovers content files under a source directory, parses their
front matter and creates immutable Document objects. It also enforces that
no two sources claim the same output path.

Key classes:
- Document: Frozen dataclass representing one source document.
- FileContentLoader: Discovers content and static files.
- LayoutResolver: Picks a layout name by folder convention.
- UrlDeriver: Derives permalinks from source paths.
- DefaultDocumentBuilder: Builds a Document from a single file.
- ContentProcessor: Facade loading every document of a site.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .errors import DuplicatePermalinkError, MalformedFrontMatterError
from .extractors import (
    CompositeMetadataExtractor,
    FrontMatter,
    default_metadata_extractor,
)
from .renderers import RendererRegistry, default_renderer_registry
from .utils import is_internal_path, normalize_url, output_path_for_url, slugify

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "folio.yaml"
LAYOUT_SUFFIXES = (".html.jinja", ".jinja", ".html", "")


@dataclass(frozen=True)
class Document:
    """A source document, immutable for the duration of a build.

    Attributes:
        path: Path to the source file; the document's identity.
        title: Human-readable title.
        body: Body text without front matter.
        date: Publication date.
        tags: Tag names.
        layout: Layout template name.
        layout_declared: Whether the layout came from front matter.
        url: Permalink of the rendered page.
        slug: URL-friendly slug.
        description: Short summary.
        draft: Whether this is a draft.
        group: First folder component (e.g., 'posts').
        folder: Folder path relative to the source directory.
        filename: Name of the source file.
        source_type: "markdown", "html" or "index".
        frontmatter: Parsed front matter.
        kind: "document" for files; derived index pages use their own kind.
        entries: Documents listed by a derived index page.
        tag: Tag name for tag listing pages.
    """

    path: Path
    title: str
    body: str
    date: datetime
    tags: tuple[str, ...]
    layout: str
    layout_declared: bool
    url: str
    slug: str
    description: str
    draft: bool
    group: str
    folder: str
    filename: str
    source_type: str
    frontmatter: FrontMatter = field(default_factory=FrontMatter)
    kind: str = "document"
    entries: tuple[Document, ...] = ()
    tag: str | None = None

    @property
    def output_path(self) -> str:
        """Relative file path of the rendered page inside the output directory."""
        return output_path_for_url(self.url)

    @property
    def extra(self) -> Mapping[str, Any]:
        """Front matter keys outside the recognized set."""
        return self.frontmatter.extra


@dataclass(frozen=True)
class Page:
    """A rendered output file.

    Attributes:
        url: Public URL of the page.
        output_path: File path relative to the output directory.
        content: Final bytes written to disk.
        source: Document, template or static file the page came from.
        kind: "document", "tag", "tags", "archive", "feed" or "static".
        title: Title of the page, empty for non-HTML outputs.
    """

    url: str
    output_path: str
    content: bytes
    source: Path
    kind: str = "document"
    title: str = ""


class FileContentLoader:
    """Discovers files under a source directory.

    Attributes:
        site_dir: Directory containing site content.
        renderer_registry: Decides which files are documents.
    """

    def __init__(
        self,
        site_dir: Path,
        renderer_registry: RendererRegistry | None = None,
        exclude: Iterable[Path] = (),
    ):
        self.site_dir = site_dir
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.exclude = tuple(p.resolve() for p in exclude)

    def _iter_public(self, include_drafts: bool) -> Iterable[Path]:
        for path in sorted(self.site_dir.rglob("*")):
            if path.is_dir():
                continue
            rel = path.relative_to(self.site_dir)
            # Skip internal directories (_layouts, _partials, _data, ...)
            if is_internal_path(rel.parent):
                continue
            if any(part.startswith(".") for part in rel.parts):
                continue
            if rel.as_posix() == CONFIG_FILENAME:
                continue
            if self.exclude and any(
                path.resolve().is_relative_to(excluded) for excluded in self.exclude
            ):
                continue
            if rel.name.startswith("_") and not include_drafts:
                continue
            yield path

    def iter_files(self, include_drafts: bool = False) -> list[Path]:
        """List content files in a stable order.

        Args:
            include_drafts: Whether to include files whose name starts with '_'.

        Returns:
            Paths to documents the renderer registry can handle.
        """
        return [
            path
            for path in self._iter_public(include_drafts)
            if self.renderer_registry.can_render(path)
        ]

    def iter_static_files(self) -> list[Path]:
        """List files copied verbatim into the output (stylesheets, images)."""
        return [
            path
            for path in self._iter_public(include_drafts=False)
            if not self.renderer_registry.can_render(path)
        ]


class LayoutResolver:
    """Resolves layout names for documents that do not declare one.

    Attributes:
        layout_dir: Directory containing layouts.
        default_layout: Layout used when no convention matches.
    """

    def __init__(self, site_dir: Path, default_layout: str = "default"):
        self.layout_dir = site_dir / "_layouts"
        self.default_layout = default_layout

    def resolve(self, path: Path, folder: str) -> str:
        """Resolve the layout for a document.

        Searches for layouts in order:
        1. {folder}/{name} - Most specific
        2. {group} - Group-level layout
        3. the default layout

        Args:
            path: Path to the source file.
            folder: Folder containing the document.

        Returns:
            Layout name to use.
        """
        name = path.stem
        candidates: list[str] = []
        if folder:
            candidates.append(f"{folder}/{name}")
            candidates.append(self.group_from_folder(folder))
        else:
            candidates.append(name)

        for candidate in candidates:
            if self.exists(candidate):
                return candidate
        return self.default_layout

    def exists(self, name: str) -> bool:
        return any(
            (self.layout_dir / f"{name}{suffix}").is_file() for suffix in LAYOUT_SUFFIXES
        )

    @staticmethod
    def group_from_folder(folder: str) -> str:
        """Return the first component of the folder path, or empty string."""
        if not folder:
            return ""
        return Path(folder).parts[0]


class UrlDeriver:
    """Derives permalinks for documents from their location."""

    def derive(self, rel: Path, slug: str) -> str:
        """Derive the URL for a document.

        Args:
            rel: Relative path from site directory.
            slug: URL-friendly slug.

        Returns:
            URL path for the document.
        """
        segments = [p for p in rel.parent.parts if p]
        if slug == "index":
            url_parts = segments
        else:
            url_parts = segments + [slug]
        path = "/".join(url_parts)
        return f"/{path}/" if path else "/"


class DefaultDocumentBuilder:
    """Builds Document objects from source files.

    Attributes:
        site_dir: Directory containing site content.
        metadata_extractor: Front matter parser and field extractors.
        layout_resolver: Convention-based layout lookup.
        url_deriver: Path-based permalink derivation.
    """

    def __init__(
        self,
        site_dir: Path,
        renderer_registry: RendererRegistry | None = None,
        metadata_extractor: CompositeMetadataExtractor | None = None,
        default_layout: str = "default",
    ):
        self.site_dir = site_dir
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.metadata_extractor = metadata_extractor or default_metadata_extractor
        self.layout_resolver = LayoutResolver(site_dir, default_layout)
        self.url_deriver = UrlDeriver()

    def build(self, path: Path, draft: bool = False) -> Document:
        """Build a Document from a source file.

        Args:
            path: Path to the source file.
            draft: Whether the filename marks a draft.

        Returns:
            Document object.

        Raises:
            MalformedFrontMatterError: If the front matter cannot be parsed.
        """
        rel = path.relative_to(self.site_dir)
        folder = rel.parent.as_posix() if rel.parent != Path(".") else ""
        try:
            raw = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedFrontMatterError(path, "file is not valid UTF-8", exc) from exc

        metadata = self.metadata_extractor.extract(raw, path)
        frontmatter: FrontMatter = metadata["frontmatter"]

        renderer = self.renderer_registry.get_renderer(path)
        slug = slugify(path.stem)
        if frontmatter.permalink:
            url = normalize_url(frontmatter.permalink)
            try:
                output_path_for_url(url)
            except ValueError as exc:
                raise MalformedFrontMatterError(path, str(exc), exc) from exc
        else:
            url = self.url_deriver.derive(rel, slug)

        if frontmatter.layout:
            layout = frontmatter.layout
        else:
            layout = self.layout_resolver.resolve(path, folder)

        return Document(
            path=path,
            title=metadata["title"],
            body=metadata["body"],
            date=metadata["date"],
            tags=frontmatter.tags,
            layout=layout,
            layout_declared=frontmatter.layout is not None,
            url=url,
            slug=slug,
            description=metadata.get("description", ""),
            draft=draft or frontmatter.draft,
            group=self.layout_resolver.group_from_folder(folder),
            folder=folder,
            filename=path.name,
            source_type=renderer.source_type if renderer else "unknown",
            frontmatter=frontmatter,
        )


def check_unique_outputs(claims: Iterable[tuple[str, Path]]) -> None:
    """Ensure no two sources produce the same output file.

    Args:
        claims: Pairs of (relative output path, source path).

    Raises:
        DuplicatePermalinkError: On the first output path claimed twice.
    """
    seen: dict[str, Path] = {}
    for output_path, source in claims:
        key = output_path.lower()
        if key in seen:
            raise DuplicatePermalinkError(source, seen[key], output_path)
        seen[key] = source


class ContentProcessor:
    """Loads every document of a site.

    Attributes:
        site_dir: Directory containing site content.
    """

    def __init__(
        self,
        site_dir: Path,
        content_loader: FileContentLoader | None = None,
        document_builder: DefaultDocumentBuilder | None = None,
        default_layout: str = "default",
        exclude: Iterable[Path] = (),
    ):
        self.site_dir = site_dir
        self._content_loader = content_loader or FileContentLoader(site_dir, exclude=exclude)
        self._document_builder = document_builder or DefaultDocumentBuilder(
            site_dir, default_layout=default_layout
        )

    def load(self, include_drafts: bool = False) -> list[Document]:
        """Load all content files and create Document objects.

        Args:
            include_drafts: Whether to include draft documents.

        Returns:
            Documents ordered by source path.

        Raises:
            MalformedFrontMatterError: If a document's front matter is invalid.
            DuplicatePermalinkError: If two documents share an output path.
        """
        documents: list[Document] = []
        for path in self._content_loader.iter_files(include_drafts):
            document = self._document_builder.build(path, draft=path.name.startswith("_"))
            if document.draft and not include_drafts:
                logger.debug("Skipping draft %s", path)
                continue
            documents.append(document)
        check_unique_outputs((d.output_path, d.path) for d in documents)
        logger.debug("Loaded %d documents from %s", len(documents), self.site_dir)
        return documents

    def static_files(self) -> list[Path]:
        return self._content_loader.iter_static_files()


def load(
    root: Path, include_drafts: bool = False, default_layout: str = "default"
) -> list[Document]:
    """Load every document under a source directory.

    Args:
        root: Source directory.
        include_drafts: Whether to include draft documents.
        default_layout: Layout for documents matching no convention.

    Returns:
        Documents ordered by source path.
    """
    return ContentProcessor(root, default_layout=default_layout).load(include_drafts)
