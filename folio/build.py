"""Site building functionality for Folio.

This module assembles the whole site: it loads configuration and data,
loads documents, computes the site index, resolves every layout, renders all
pages and finally writes the output directory.

A build either completes or leaves the previous output untouched. Pages are
rendered in memory first, written into a staging directory next to the
output, and the staging directory replaces the output only once every file
has been written.

Key functions:
- build_site: Main function to build the entire site.
- load_config: Loads site configuration from folio.yaml.
- load_data: Loads site data from YAML files in the _data directory.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .collections import SiteIndex, build_site_index
from .content import CONFIG_FILENAME, ContentProcessor, Document, Page, check_unique_outputs
from .errors import BuildError, ConfigError, WriteError
from .feeds import create_default_feed_registry
from .indices import ArchivePage, TagOverviewPage, TagPages
from .protocols import IndexPageSource
from .templates import LISTING_TEMPLATE, Renderer, ResolvedTemplate, TemplateResolver

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "title": "",
    "url": "",
    "root_url": "",
    "output_dir": "_site",
    "default_layout": "default",
    "tags_dir": "tags",
    "jobs": 4,
    "feeds": True,
    "archive": True,
}


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        pages: Every page written, ordered by output path.
        output_dir: Directory where the site was built.
        data: Global site fields the templates saw as ``site``.
        index: Site index computed for the build.
    """

    pages: list[Page]
    output_dir: Path
    data: dict[str, Any]
    index: SiteIndex


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except (yaml.YAMLError, ValueError, TypeError) as exc:
        raise ConfigError(path, f"invalid YAML: {exc}", exc) from exc
    except OSError as exc:
        raise ConfigError(path, f"could not read file: {exc.strerror or exc}", exc) from exc


def load_config(source_dir: Path) -> dict[str, Any]:
    """Load site configuration from folio.yaml.

    Args:
        source_dir: Root directory of the site sources.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigError: If the file is not a YAML mapping or a value is invalid.
    """
    config_path = source_dir / CONFIG_FILENAME
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        loaded = _read_yaml(config_path) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(config_path, "configuration must be a mapping")
        config.update(loaded)
    _validate_config(config, config_path)
    return config


def _validate_config(config: Mapping[str, Any], config_path: Path) -> None:
    jobs = config.get("jobs")
    if isinstance(jobs, bool) or not isinstance(jobs, int) or jobs < 1:
        raise ConfigError(config_path, f"'jobs' must be a positive integer, got {jobs!r}")
    for key in ("default_layout", "tags_dir", "output_dir"):
        value = config.get(key)
        if not isinstance(value, str) or not value.strip("/ "):
            raise ConfigError(config_path, f"'{key}' must be a non-empty string")


def load_data(source_dir: Path) -> dict[str, Any]:
    """Load site data from YAML files in the _data directory.

    ``site.yaml`` is merged into the top level; every other file is
    available under its stem.

    Args:
        source_dir: Root directory of the site sources.

    Returns:
        Dictionary containing merged data from all YAML files.
    """
    data_dir = source_dir / "_data"
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return data
    for path in sorted(data_dir.glob("*.yaml")):
        payload = _read_yaml(path)
        if payload is None:
            continue
        if path.name == "site.yaml":
            if not isinstance(payload, dict):
                raise ConfigError(path, "site.yaml must be a mapping")
            data.update(payload)
        else:
            data[path.stem] = payload
    return data


def build_site(
    source_dir: Path,
    output_dir: Path | None = None,
    include_drafts: bool = False,
    jobs: int | None = None,
    config_overrides: Mapping[str, Any] | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        source_dir: Directory with content, ``_layouts`` and ``_partials``.
        output_dir: Directory to write to; defaults to the configured output_dir.
        include_drafts: Whether to include draft documents.
        jobs: Number of render worker threads; defaults to the configured jobs.
        config_overrides: Values overriding folio.yaml.

    Returns:
        BuildResult describing the written site.

    Raises:
        BuildError: Any failure; nothing is written in that case.
    """
    if not source_dir.is_dir():
        raise ConfigError(source_dir, "source directory does not exist")
    config = load_config(source_dir)
    if config_overrides:
        config.update({k: v for k, v in config_overrides.items() if v is not None})
        _validate_config(config, source_dir / CONFIG_FILENAME)
    output_dir = output_dir or (source_dir / config["output_dir"])
    _check_output_dir(source_dir, output_dir)
    jobs = jobs or config["jobs"]

    site = dict(config)
    site.update(load_data(source_dir))

    default_layout = config["default_layout"]
    processor = ContentProcessor(
        source_dir, default_layout=default_layout, exclude=(output_dir,)
    )
    documents = processor.load(include_drafts=include_drafts)
    index = build_site_index(documents)

    resolver = TemplateResolver(source_dir, default_layout=default_layout)
    derived = _derived_documents(source_dir, resolver, index, config)
    to_render = [*documents, *derived]

    feeds = (
        create_default_feed_registry().pages(source_dir, index.pages, site)
        if config["feeds"]
        else []
    )
    static = [_static_page(source_dir, path) for path in processor.static_files()]

    check_unique_outputs(
        [(d.output_path, d.path) for d in to_render]
        + [(p.output_path, p.source) for p in (*feeds, *static)]
    )

    templates = _resolve_templates(resolver, to_render)
    if derived:
        resolver.resolve_template(LISTING_TEMPLATE)

    renderer = Renderer(resolver, site, index, tags_dir=config["tags_dir"])
    rendered = render_documents(renderer, to_render, templates, jobs)

    pages = sorted([*rendered, *feeds, *static], key=lambda p: p.output_path)
    write_site(output_dir, pages)
    logger.info("Built %d pages into %s", len(pages), output_dir)
    return BuildResult(pages=pages, output_dir=output_dir, data=site, index=index)


def _check_output_dir(source_dir: Path, output_dir: Path) -> None:
    source = source_dir.resolve()
    output = output_dir.resolve()
    if output == source or source.is_relative_to(output):
        raise ConfigError(
            output_dir, "output directory must not contain the source directory"
        )


def _derived_documents(
    source_dir: Path,
    resolver: TemplateResolver,
    index: SiteIndex,
    config: Mapping[str, Any],
) -> list[Document]:
    default_layout = config["default_layout"]
    tags_dir = config["tags_dir"]
    sources: list[IndexPageSource] = [
        TagPages(source_dir, resolver, default_layout, tags_dir),
        TagOverviewPage(source_dir, resolver, default_layout, tags_dir),
    ]
    if config["archive"]:
        sources.append(ArchivePage(source_dir, resolver, default_layout))
    derived: list[Document] = []
    for source in sources:
        derived.extend(source.documents(index))
    return derived


def _static_page(source_dir: Path, path: Path) -> Page:
    rel = path.relative_to(source_dir).as_posix()
    try:
        content = path.read_bytes()
    except OSError as exc:
        raise BuildError(path, f"could not read file: {exc.strerror or exc}", exc) from exc
    return Page(url=f"/{rel}", output_path=rel, content=content, source=path, kind="static")


def _resolve_templates(
    resolver: TemplateResolver, documents: Iterable[Document]
) -> dict[str, ResolvedTemplate]:
    """Resolve every layout in use before rendering starts.

    Raises:
        UnknownLayoutError: Naming the first document with a missing layout.
        CyclicIncludeError: If a layout's include graph has a cycle.
    """
    templates: dict[str, ResolvedTemplate] = {}
    for document in documents:
        if document.layout not in templates:
            templates[document.layout] = resolver.resolve(
                document.layout, referrer=document.path
            )
    return templates


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"


def _render_one(renderer: Renderer, document: Document, template: ResolvedTemplate) -> Page:
    try:
        return renderer.render(document, template)
    except BuildError:
        raise
    except Exception as exc:
        raise BuildError(document.path, _format_error_message(exc), exc) from exc


def render_documents(
    renderer: Renderer,
    documents: Sequence[Document],
    templates: Mapping[str, ResolvedTemplate],
    jobs: int = 1,
) -> list[Page]:
    """Render documents, in parallel when jobs > 1.

    The first failure cancels every render that has not started yet and is
    raised; pages are returned in the order of ``documents``.

    Raises:
        BuildError: The first render failure.
    """
    if jobs <= 1 or len(documents) <= 1:
        return [_render_one(renderer, d, templates[d.layout]) for d in documents]

    results: list[Page | None] = [None] * len(documents)
    executor = ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="folio-render")
    try:
        futures = {
            executor.submit(_render_one, renderer, d, templates[d.layout]): i
            for i, d in enumerate(documents)
        }
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    except BaseException:
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return [page for page in results if page is not None]


def write_site(output_dir: Path, pages: Iterable[Page]) -> None:
    """Write pages and swap them into place as the new output directory.

    Args:
        output_dir: Final output directory; replaced as a whole.
        pages: Pages to write.

    Raises:
        WriteError: On any I/O failure. The previous output is left in place
            and the staging directory is removed.
    """
    parent = output_dir.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{output_dir.name}-", dir=parent))
        staging.chmod(0o755)
    except OSError as exc:
        raise WriteError(
            parent, f"could not create staging directory: {exc.strerror or exc}", exc
        ) from exc

    try:
        for page in pages:
            target = staging / page.output_path
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(page.content)
            except OSError as exc:
                raise WriteError(
                    page.source,
                    f"could not write {page.output_path}: {exc.strerror or exc}",
                    exc,
                ) from exc
        _swap_into_place(staging, output_dir)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise


def _swap_into_place(staging: Path, output_dir: Path) -> None:
    """Replace output_dir with staging, restoring the old output on failure."""
    backup = None
    try:
        if output_dir.exists() or output_dir.is_symlink():
            backup = staging.with_name(f"{staging.name}.previous")
            os.replace(output_dir, backup)
        try:
            os.replace(staging, output_dir)
        except OSError:
            if backup is not None:
                os.replace(backup, output_dir)
                backup = None
            raise
    except OSError as exc:
        raise WriteError(
            output_dir, f"could not replace output directory: {exc.strerror or exc}", exc
        ) from exc

    if backup is not None:
        try:
            if backup.is_dir() and not backup.is_symlink():
                shutil.rmtree(backup)
            else:
                backup.unlink()
        except OSError as exc:
            logger.warning(
                "Could not remove previous output %s: %s", backup, exc.strerror or exc
            )
