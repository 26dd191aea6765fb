"""Feed generation for Folio.

Feeds are derived pages: they are computed from the site index and written
like any other page. A feed is only produced when the site configures its
absolute ``url``.

Dates inside feeds come from document dates, never from the clock, so an
unchanged site produces byte-identical feeds.

Classes:
    FeedGenerator: Base class for feed generators.
    SitemapGenerator: Generates sitemap.xml files.
    RSSGenerator: Generates RSS 2.0 feed files.
    FeedRegistry: Registry for managing feed generators.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from markupsafe import escape

from .collections import chronological
from .content import Document, Page

RFC_822 = "%a, %d %b %Y %H:%M:%S +0000"


class FeedGenerator(ABC):
    """Abstract base class for feed generators."""

    @property
    @abstractmethod
    def filename(self) -> str:
        """Return the output filename for this feed."""
        ...

    @abstractmethod
    def generate(
        self,
        documents: Iterable[Document],
        site: Mapping[str, Any],
    ) -> str | None:
        """Generate feed content.

        Args:
            documents: Documents to include.
            site: Site fields; ``url`` is the absolute base URL.

        Returns:
            Feed content, or None if the feed cannot be generated.
        """
        ...

    def page(
        self,
        site_dir: Path,
        documents: Iterable[Document],
        site: Mapping[str, Any],
    ) -> Page | None:
        """Generate the feed as a Page, or None when it is skipped."""
        content = self.generate(documents, site)
        if content is None:
            return None
        return Page(
            url=f"/{self.filename}",
            output_path=self.filename,
            content=content.encode("utf-8"),
            source=site_dir / self.filename,
            kind="feed",
        )


def _base_url(site: Mapping[str, Any]) -> str:
    return str(site.get("url") or "").rstrip("/")


class SitemapGenerator(FeedGenerator):
    """Generates sitemap.xml following the sitemaps.org protocol."""

    @property
    def filename(self) -> str:
        return "sitemap.xml"

    def generate(
        self,
        documents: Iterable[Document],
        site: Mapping[str, Any],
    ) -> str | None:
        base_url = _base_url(site)
        if not base_url:
            return None

        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        ]
        for document in sorted(documents, key=lambda d: d.url):
            full_url = escape(f"{base_url}{document.url}")
            lastmod = document.date.strftime("%Y-%m-%d")
            lines.append(
                f"  <url><loc>{full_url}</loc><lastmod>{lastmod}</lastmod></url>"
            )
        lines.append("</urlset>")
        return "\n".join(lines) + "\n"


class RSSGenerator(FeedGenerator):
    """Generates an RSS 2.0 feed, newest documents first.

    Attributes:
        limit: Maximum number of items.
    """

    def __init__(self, limit: int = 20):
        self.limit = limit

    @property
    def filename(self) -> str:
        return "rss.xml"

    def generate(
        self,
        documents: Iterable[Document],
        site: Mapping[str, Any],
    ) -> str | None:
        base_url = _base_url(site)
        if not base_url:
            return None
        title = site.get("title") or base_url

        ordered = chronological(documents)[: self.limit]
        items = []
        for document in ordered:
            link = escape(f"{base_url}{document.url}")
            description = document.description or document.title
            items.append(
                f"<item><title>{escape(document.title)}</title><link>{link}</link>"
                f"<guid>{link}</guid>"
                f"<description>{escape(description)}</description>"
                f"<pubDate>{document.date.strftime(RFC_822)}</pubDate></item>"
            )

        rss = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{escape(title)}</title>",
            f"<link>{escape(base_url)}/</link>",
            f"<description>{escape(site.get('description') or title)}</description>",
        ]
        if ordered:
            rss.append(f"<lastBuildDate>{ordered[0].date.strftime(RFC_822)}</lastBuildDate>")
        rss.extend(items)
        rss.append("</channel></rss>")
        return "\n".join(rss) + "\n"


class FeedRegistry:
    """Registry for feed generators run during the build."""

    def __init__(self) -> None:
        self._generators: list[FeedGenerator] = []

    def register(self, generator: FeedGenerator) -> None:
        self._generators.append(generator)

    def pages(
        self,
        site_dir: Path,
        documents: Iterable[Document],
        site: Mapping[str, Any],
    ) -> list[Page]:
        """Generate every registered feed.

        Returns:
            Pages for the feeds that were generated.
        """
        documents = list(documents)
        generated = []
        for generator in self._generators:
            page = generator.page(site_dir, documents, site)
            if page is not None:
                generated.append(page)
        return generated


def create_default_feed_registry() -> FeedRegistry:
    """Create a registry with the sitemap and RSS generators."""
    registry = FeedRegistry()
    registry.register(SitemapGenerator())
    registry.register(RSSGenerator())
    return registry
