"""Utility functions for Folio.

This module contains small helpers shared across the pipeline: string
processing, path classification, date handling and permalink mapping.

Key functions:
    slugify: Convert filenames to URL slugs.
    tag_slug: Convert tag names to URL slugs, keeping Unicode letters.
    titleize: Convert filenames to human-readable titles.
    extract_date_from_name: Extract date from filename prefix.
    coerce_datetime: Normalize front matter date values.
    is_markdown: Check if a path is a Markdown file.
    is_html: Check if a path is a plain HTML file.
    is_internal_path: Check if a path belongs to layouts, partials or data.
    join_root_url: Join a base URL with a path.
    output_path_for_url: Map a permalink to a file inside the output directory.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from pathlib import Path, PurePosixPath

_DATE_PREFIX_PARTS = 3


def _strip_date_prefix(name: str) -> str:
    parts = name.split("-")
    if len(parts) > _DATE_PREFIX_PARTS and all(
        p.isdigit() for p in parts[:_DATE_PREFIX_PARTS]
    ):
        return "-".join(parts[_DATE_PREFIX_PARTS:])
    return name


def slugify(name: str) -> str:
    """Convert filename (without extension) to slug, dropping date prefix.

    Args:
        name: Filename stem.

    Returns:
        URL-friendly slug.
    """
    cleaned = _strip_date_prefix(name)
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def tag_slug(tag: str) -> str:
    """Convert a tag name to a URL slug, keeping non-ASCII letters.

    Examples:
        >>> tag_slug("Machine Learning")
        'machine-learning'

        >>> tag_slug("日本語")
        '日本語'
    """
    cleaned = re.sub(r"[\W_]+", "-", tag.casefold(), flags=re.UNICODE)
    return cleaned.strip("-") or "tag"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Removes date prefixes (YYYY-MM-DD), replaces hyphens and underscores
    with spaces, and capitalizes each word.

    Args:
        filename: Filename with or without extension.

    Returns:
        Human-readable title string.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'

        >>> titleize("getting-started.md")
        'Getting Started'
    """
    base = _strip_date_prefix(Path(filename).stem)
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Args:
        name: Filename stem (without extension).

    Returns:
        datetime object if a valid date prefix is found, None otherwise.
    """
    parts = name.split("-")
    if len(parts) >= _DATE_PREFIX_PARTS and all(
        p.isdigit() for p in parts[:_DATE_PREFIX_PARTS]
    ):
        try:
            return datetime(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            return None
    return None


def coerce_datetime(value: object) -> datetime:
    """Normalize a front matter date value to a naive datetime.

    YAML yields ``date`` for bare dates and ``datetime`` for timestamps;
    quoted values arrive as ISO-8601 strings.

    Raises:
        ValueError: If the value cannot be read as a date.
    """
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip()).replace(tzinfo=None)
    raise ValueError(f"expected a date, got {type(value).__name__}")


def first_paragraph(text: str, limit: int = 160) -> str:
    """Extract and clean the first non-heading paragraph from text.

    Strips HTML tags, collapses whitespace and truncates to the limit.
    """
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    for para in paragraphs:
        if para.startswith(("#", "```", "![", "---")):
            continue
        para = re.sub(r"<[^>]+>", "", para)
        collapsed = " ".join(para.split())
        if collapsed:
            return collapsed[:limit]
    return ""


def is_internal_path(path: Path) -> bool:
    """Check if a path is internal (contains components starting with _).

    Internal paths include layouts, partials, data files and drafts.
    """
    return any(part.startswith("_") for part in path.parts)


def is_markdown(path: Path) -> bool:
    """Check if a path is a Markdown file.

    Args:
        path: Path to check.

    Returns:
        True if the file has a .md or .markdown extension (case-insensitive).
    """
    return path.suffix.lower() in (".md", ".markdown")


def is_template(path: Path) -> bool:
    """Check if a path is a Jinja template file."""
    return path.suffix.lower() == ".jinja"


def is_html(path: Path) -> bool:
    """Check if a path is a plain HTML file (not a Jinja template)."""
    return path.suffix.lower() == ".html" and not is_template(path)


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com', '/about')
        'https://example.com/about'

        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def normalize_url(url: str) -> str:
    """Give a permalink a leading slash and collapse duplicate slashes."""
    collapsed = re.sub(r"/{2,}", "/", f"/{url.strip()}")
    return collapsed


def output_path_for_url(url: str) -> str:
    """Map a permalink to a relative file path in the output directory.

    URLs ending with a slash (or without a file extension) become
    ``index.html`` files inside their folder; URLs naming a file are
    written as-is.

    Raises:
        ValueError: If the URL escapes the output directory.

    Examples:
        >>> output_path_for_url("/posts/hello/")
        'posts/hello/index.html'

        >>> output_path_for_url("/rss.xml")
        'rss.xml'
    """
    posix = PurePosixPath(normalize_url(url))
    if ".." in posix.parts:
        raise ValueError(f"permalink escapes the output directory: {url}")
    relative = posix.relative_to("/")
    if url.endswith("/") or not relative.suffix:
        relative = relative / "index.html"
    return relative.as_posix()
