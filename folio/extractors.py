"""Front matter parsing and metadata extractors for Folio.

Front matter is a YAML mapping delimited by ``---`` lines at the very start
of a document. Recognized keys are parsed into the typed FrontMatter
structure; any other key is kept in its ``extra`` mapping.

Extractors fill in the metadata that front matter leaves out. Each one
handles a single field and the composite merges their results.

Key classes:
- FrontMatter: Typed front matter with an open extension mapping.
- TitleExtractor: First level-1 heading or the filename.
- DateExtractor: Filename date prefix or file modification time.
- DescriptionExtractor: First paragraph of the body.
- CompositeMetadataExtractor: Runs extractors, front matter taking precedence.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from .errors import MalformedFrontMatterError
from .utils import coerce_datetime, extract_date_from_name, first_paragraph, titleize

FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE
)
FRONTMATTER_OPEN_RE = re.compile(r"\A---[ \t]*\r?\n")

KNOWN_KEYS = frozenset(
    {"title", "date", "tags", "layout", "permalink", "draft", "description"}
)


@dataclass(frozen=True)
class FrontMatter:
    """Typed document metadata.

    Attributes:
        title: Explicit page title.
        date: Publication date.
        tags: Tag names, in declaration order without duplicates.
        layout: Layout name the document is rendered through.
        permalink: Output URL overriding the path-derived one.
        draft: Whether the document is a draft.
        description: Short summary used in listings and feeds.
        extra: Every key not listed above, read-only.
    """

    title: str | None = None
    date: datetime | None = None
    tags: tuple[str, ...] = ()
    layout: str | None = None
    permalink: str | None = None
    draft: bool = False
    description: str | None = None
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], path: Path) -> FrontMatter:
        """Build front matter from a parsed YAML mapping.

        Raises:
            MalformedFrontMatterError: If a recognized key has the wrong type.
        """

        def fail(key: str, expected: str) -> MalformedFrontMatterError:
            value = data[key]
            return MalformedFrontMatterError(
                path,
                f"front matter key '{key}' must be {expected}, got {type(value).__name__}",
            )

        def optional_str(key: str) -> str | None:
            value = data.get(key)
            if value is None:
                return None
            if not isinstance(value, str):
                raise fail(key, "a string")
            return value.strip() or None

        date = None
        if data.get("date") is not None:
            try:
                date = coerce_datetime(data["date"])
            except ValueError as exc:
                raise MalformedFrontMatterError(
                    path, f"front matter key 'date' is not a valid date: {exc}", exc
                ) from exc

        draft = data.get("draft", False)
        if not isinstance(draft, bool):
            raise fail("draft", "true or false")

        return cls(
            title=optional_str("title"),
            date=date,
            tags=_parse_tags(data, path),
            layout=optional_str("layout"),
            permalink=optional_str("permalink"),
            draft=draft,
            description=optional_str("description"),
            extra=MappingProxyType(
                {k: v for k, v in data.items() if k not in KNOWN_KEYS}
            ),
        )


def _parse_tags(data: Mapping[str, Any], path: Path) -> tuple[str, ...]:
    value = data.get("tags")
    if value is None:
        return ()
    if isinstance(value, str):
        raw = value.split(",")
    elif isinstance(value, list):
        raw = value
    else:
        raise MalformedFrontMatterError(
            path,
            "front matter key 'tags' must be a list or a comma separated string, "
            f"got {type(value).__name__}",
        )
    tags: list[str] = []
    for item in raw:
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            raise MalformedFrontMatterError(
                path, f"tag {item!r} must be a string"
            )
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tuple(tags)


def extract_frontmatter(text: str, path: Path) -> tuple[FrontMatter, str]:
    """Split a document into front matter and body.

    A document without a leading ``---`` line has empty front matter.

    Args:
        text: Raw file content.
        path: Path to the source file, used in error messages.

    Returns:
        Tuple of (front matter, remaining body).

    Raises:
        MalformedFrontMatterError: If the block is unterminated, is not valid
            YAML, or is not a mapping.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        if FRONTMATTER_OPEN_RE.match(text):
            raise MalformedFrontMatterError(
                path, "front matter block is not closed with '---'"
            )
        return FrontMatter(), text
    try:
        data = yaml.safe_load(match.group(1))
    except (yaml.YAMLError, ValueError, TypeError) as exc:
        raise MalformedFrontMatterError(
            path, f"front matter is not valid YAML: {exc}", exc
        ) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedFrontMatterError(
            path,
            f"front matter must be a mapping, got {type(data).__name__}",
        )
    return FrontMatter.from_mapping(data, path), text[match.end() :]


class TitleExtractor:
    """Extracts title from the first level-1 heading, falling back to the filename."""

    def extract(self, body: str, path: Path) -> dict[str, Any]:
        if path.suffix.lower() in (".md", ".markdown"):
            for line in body.splitlines():
                stripped = line.strip()
                if stripped.startswith("# "):
                    return {"title": stripped[2:].strip()}
        return {"title": titleize(path.name)}


class DateExtractor:
    """Extracts date from filename or file metadata.

    Looks for YYYY-MM-DD prefix in filename, falling back
    to file modification time.
    """

    def extract(self, body: str, path: Path) -> dict[str, Any]:
        date = extract_date_from_name(path.stem)
        if date is None:
            date = datetime.fromtimestamp(path.stat().st_mtime).replace(microsecond=0)
        return {"date": date}


class DescriptionExtractor:
    """Extracts a short description from the first paragraph."""

    def extract(self, body: str, path: Path) -> dict[str, Any]:
        return {"description": first_paragraph(body)}


class CompositeMetadataExtractor:
    """Combines metadata extractors with parsed front matter.

    Extractors run in order and later ones override earlier ones; explicit
    front matter values override every extractor.
    """

    def __init__(self, extractors: list | None = None):
        """Initialize with a list of extractors.

        Args:
            extractors: Extractor instances. If None, uses the defaults.
        """
        if extractors is None:
            self._extractors = [TitleExtractor(), DateExtractor(), DescriptionExtractor()]
        else:
            self._extractors = list(extractors)

    def add_extractor(self, extractor) -> None:
        self._extractors.append(extractor)

    def extract(self, text: str, path: Path) -> dict[str, Any]:
        """Extract all metadata from a raw document.

        Returns:
            Dictionary with ``frontmatter``, ``body`` and one key per
            extracted field.

        Raises:
            MalformedFrontMatterError: If the front matter cannot be parsed.
        """
        frontmatter, body = extract_frontmatter(text, path)
        result: dict[str, Any] = {}
        for extractor in self._extractors:
            result.update(extractor.extract(body, path))
        for key in ("title", "date", "description"):
            value = getattr(frontmatter, key)
            if value is not None:
                result[key] = value
        result["frontmatter"] = frontmatter
        result["body"] = body
        return result


default_metadata_extractor = CompositeMetadataExtractor()
