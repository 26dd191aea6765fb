"""Command-line interface for Folio.

This module defines the CLI commands using the Click framework.

Commands:
- build: Build the site into the output directory.
- post: Create a new Markdown document interactively.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import click
import questionary
import yaml

from . import __version__
from .utils import slugify

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


class _ClickHandler(logging.Handler):
    """Logging handler writing through click.echo to the current stderr."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def setup_logging(level: int = logging.WARNING) -> None:
    """Send folio log records to stderr at the given level."""
    handler = _ClickHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger = logging.getLogger("folio")
    logger.handlers[:] = [handler]
    logger.setLevel(level)


@click.group()
@click.version_option(version=__version__, prog_name="folio")
def cli():
    """Folio static site generator."""


@cli.command()
@click.option(
    "--source",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory containing content, _layouts and _partials",
)
@click.option(
    "--output",
    type=click.Path(file_okay=False, path_type=Path),
    required=False,
    help="Output directory (overrides folio.yaml output_dir)",
)
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("--jobs", type=click.IntRange(min=1), required=False, help="Render worker threads")
@click.option("-v", "--verbose", is_flag=True, help="Log progress details")
def build(source: Path, output: Path | None, drafts: bool, jobs: int | None, verbose: bool):
    """Build the site into the output directory."""
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    from .build import build_site
    from .errors import BuildError

    try:
        result = build_site(source, output, include_drafts=drafts, jobs=jobs)
    except BuildError as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        location = _display_path(exc.source_path, source)
        click.echo(click.style(f"  File: {location}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
        raise SystemExit(1) from None
    click.echo(f"Built {len(result.pages)} pages into {result.output_dir}")


def _display_path(path: Path, source: Path) -> str:
    try:
        return str(path.resolve().relative_to(source.resolve()))
    except ValueError:
        return str(path)


@cli.command()
@click.option(
    "--source",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Site source directory",
)
def post(source: Path):
    """Create a new Markdown document interactively."""
    folders = _get_content_folders(source)

    folder = questionary.select(
        "Select folder:",
        choices=folders,
        style=_questionary_style(),
    ).ask()
    if folder is None:
        raise click.Abort()

    title = questionary.text(
        "Title:",
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()
    title = title.strip()

    tags = questionary.text(
        "Tags (comma separated):",
        style=_questionary_style(),
    ).ask()
    if tags is None:
        raise click.Abort()

    target_dir = source if folder == ". (root)" else source / folder
    now = datetime.now()
    slug = slugify(title)
    filename = f"{now:%Y-%m-%d}-{slug}.md"
    target_path = target_dir / filename

    if target_path.exists():
        raise click.ClickException(f"File already exists: {target_path}")

    existing = _get_existing_slugs(target_dir)
    if slug in existing:
        raise click.ClickException(
            f"A file with slug '{slug}' already exists: {existing[slug]}"
        )

    target_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_text(_new_document(title, now, tags), encoding="utf-8")
    click.echo(f"Created {target_path}")


def _new_document(title: str, date: datetime, tags: str) -> str:
    """Return the text of a new document with front matter."""
    frontmatter = {
        "title": title,
        "date": date.strftime("%Y-%m-%d"),
        "tags": [t.strip() for t in tags.split(",") if t.strip()],
    }
    header = yaml.safe_dump(frontmatter, sort_keys=False, allow_unicode=True)
    return f"---\n{header}---\n\n"


def _get_content_folders(source: Path) -> list[str]:
    """Get list of content folders in the source directory.

    Returns folders that don't start with _ or . (excludes _layouts, _partials, etc.)
    """
    folders = sorted(
        path.name
        for path in source.iterdir()
        if path.is_dir() and not path.name.startswith(("_", "."))
    )
    folders.insert(0, ". (root)")
    return folders


def _get_existing_slugs(folder: Path) -> dict[str, str]:
    """Map slugs of Markdown files in a folder to their filenames."""
    slugs: dict[str, str] = {}
    if folder.exists():
        for f in sorted(folder.iterdir()):
            if f.is_file() and f.suffix == ".md":
                slugs.setdefault(slugify(f.stem), f.name)
    return slugs


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()
