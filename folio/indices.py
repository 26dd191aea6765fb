"""Derived index pages for Folio.

Tag listings, the tag overview and the archive are computed from the site
index and rendered through layouts exactly like documents. Each source
produces virtual documents whose ``entries`` hold the listed documents.

Layouts: a tag page uses the ``tag`` layout when the site defines one, the
overview uses ``tags`` and the archive uses ``archive``; otherwise they fall
back to the default layout with the built-in listing as their content.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from .collections import SiteIndex
from .content import Document
from .templates import TemplateResolver

_EPOCH = datetime(1970, 1, 1)


class _IndexPageSource:
    """Shared construction of virtual documents."""

    kind = ""
    layout_name = ""

    def __init__(self, site_dir: Path, resolver: TemplateResolver, default_layout: str = "default"):
        self.site_dir = site_dir
        self.resolver = resolver
        self.default_layout = default_layout

    def _layout(self) -> str:
        if self.resolver.has_layout(self.layout_name):
            return self.layout_name
        return self.default_layout

    def _document(
        self,
        url: str,
        title: str,
        entries: Sequence[Document],
        tag: str | None = None,
    ) -> Document:
        newest = entries[0].date if entries else _EPOCH
        slug = url.strip("/").rsplit("/", 1)[-1] or "index"
        return Document(
            path=self.site_dir / url.strip("/"),
            title=title,
            body="",
            date=newest,
            tags=(),
            layout=self._layout(),
            layout_declared=False,
            url=url,
            slug=slug,
            description="",
            draft=False,
            group="",
            folder="",
            filename="",
            source_type="index",
            kind=self.kind,
            entries=tuple(entries),
            tag=tag,
        )


class TagPages(_IndexPageSource):
    """One listing page per tag, newest documents first."""

    kind = "tag"
    layout_name = "tag"

    def __init__(
        self,
        site_dir: Path,
        resolver: TemplateResolver,
        default_layout: str = "default",
        tags_dir: str = "tags",
    ):
        super().__init__(site_dir, resolver, default_layout)
        self.tags_dir = tags_dir.strip("/")

    def documents(self, index: SiteIndex) -> list[Document]:
        return [
            self._document(
                f"/{self.tags_dir}/{index.slug_for(tag)}/",
                f"Tagged: {tag}",
                list(tagged),
                tag=tag,
            )
            for tag, tagged in index.tags.items()
        ]


class TagOverviewPage(TagPages):
    """A single page listing every tag with its document count."""

    kind = "tags"
    layout_name = "tags"

    def documents(self, index: SiteIndex) -> list[Document]:
        if not index.tags:
            return []
        return [self._document(f"/{self.tags_dir}/", "Tags", list(index.pages))]


class ArchivePage(_IndexPageSource):
    """Every document in chronological order, newest first."""

    kind = "archive"
    layout_name = "archive"

    def documents(self, index: SiteIndex) -> list[Document]:
        if not index.pages:
            return []
        return [self._document("/archive/", "Archive", list(index.pages))]
