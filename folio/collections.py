"""Document collections and the site index.

The site index is computed once, before any rendering, and handed to
templates as read-only collections.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field

from .content import Document
from .utils import tag_slug


def chronological(documents: Iterable[Document]) -> list[Document]:
    """Order documents by date, newest first.

    Documents sharing a date are ordered by permalink so the result does not
    depend on discovery order.
    """
    by_url = sorted(documents, key=lambda d: d.url)
    return sorted(by_url, key=lambda d: d.date, reverse=True)


class PageCollection(Sequence[Document]):
    """Lightweight helper for working with lists of documents in templates and code."""

    def __init__(self, pages: Iterable[Document]):
        self._pages = tuple(pages)

    def __iter__(self) -> Iterator[Document]:
        return iter(self._pages)

    def __len__(self) -> int:
        return len(self._pages)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return PageCollection(self._pages[item])
        return self._pages[item]

    def group(self, name: str) -> PageCollection:
        return PageCollection(p for p in self._pages if p.group == name)

    def with_tag(self, tag: str) -> PageCollection:
        key = tag.casefold()
        return PageCollection(
            p for p in self._pages if any(t.casefold() == key for t in p.tags)
        )

    def drafts(self) -> PageCollection:
        return PageCollection(p for p in self._pages if p.draft)

    def published(self) -> PageCollection:
        return PageCollection(p for p in self._pages if not p.draft)

    def sorted(self, reverse: bool = True) -> PageCollection:
        """Sort documents by date.

        Args:
            reverse: If True (default), newest first.
        """
        ordered = chronological(self._pages)
        if not reverse:
            ordered = sorted(sorted(self._pages, key=lambda d: d.url), key=lambda d: d.date)
        return PageCollection(ordered)

    def latest(self, count: int = 5) -> PageCollection:
        return self.sorted()[:count]

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"PageCollection({len(self._pages)} pages)"


class TagCollection(Mapping[str, PageCollection]):
    """Mapping of tag name to PageCollection, iterated in tag name order.

    Lookups ignore case, so ``tags["python"]`` finds the ``Python`` tag.
    """

    def __init__(self, mapping: Mapping[str, Iterable[Document]]):
        self._mapping = {k: PageCollection(mapping[k]) for k in sorted(mapping)}
        self._names = {k.casefold(): k for k in self._mapping}

    def __getitem__(self, key: str) -> PageCollection:
        return self._mapping[self._names.get(key.casefold(), key)]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.casefold() in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"TagCollection({len(self._mapping)} tags)"


@dataclass(frozen=True)
class SiteIndex:
    """Derived aggregate over all documents of a build.

    Attributes:
        pages: Every document, newest first.
        tags: Tag name to documents carrying it, newest first.
        tag_slugs: Casefolded tag name to its distinct URL slug.
    """

    pages: PageCollection
    tags: TagCollection
    tag_slugs: Mapping[str, str] = field(default_factory=dict)

    def slug_for(self, tag: str) -> str:
        """Return the URL slug of a tag's listing page."""
        return self.tag_slugs.get(tag.casefold()) or tag_slug(tag)


def build_tags_index(documents: Iterable[Document]) -> dict[str, list[Document]]:
    """Map each tag to the documents carrying it, newest first.

    Tags differing only by case are one tag, named by the spelling that
    sorts first.
    """
    spellings: dict[str, set[str]] = {}
    grouped: dict[str, list[Document]] = {}
    for document in chronological(documents):
        seen: set[str] = set()
        for tag in document.tags:
            key = tag.casefold()
            spellings.setdefault(key, set()).add(tag)
            if key in seen:
                continue
            seen.add(key)
            grouped.setdefault(key, []).append(document)
    return {min(spellings[key]): tagged for key, tagged in grouped.items()}


def assign_tag_slugs(tags: Iterable[str]) -> dict[str, str]:
    """Give every tag a distinct URL slug.

    Tags are visited in name order; a tag whose slug is already taken gets
    the first free numeric suffix (``c``, ``c-2``, ``c-3``).

    Returns:
        Casefolded tag name to slug.
    """
    slugs: dict[str, str] = {}
    taken: set[str] = set()
    for tag in sorted(tags):
        base = tag_slug(tag)
        slug, suffix = base, 2
        while slug in taken:
            slug = f"{base}-{suffix}"
            suffix += 1
        taken.add(slug)
        slugs[tag.casefold()] = slug
    return slugs


def build_site_index(documents: Iterable[Document]) -> SiteIndex:
    """Compute the full site index for a set of documents."""
    documents = list(documents)
    tags = build_tags_index(documents)
    return SiteIndex(
        pages=PageCollection(chronological(documents)),
        tags=TagCollection(tags),
        tag_slugs=assign_tag_slugs(tags),
    )
