"""Build errors for Folio.

Every failure during a build is fatal and is reported as a subclass of
BuildError, carrying the path of the offending document, template or output
file so the CLI can point the author at it.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


class ConfigError(BuildError):
    """The site configuration or a data file could not be read."""


class MalformedFrontMatterError(BuildError):
    """A document's front matter block is not a valid metadata mapping."""


class DuplicatePermalinkError(BuildError):
    """Two sources resolve to the same output path.

    Attributes:
        other_path: The source that claimed the output path first.
        output_path: The contested output path.
    """

    def __init__(self, source_path: Path, other_path: Path, output_path: str):
        self.other_path = other_path
        self.output_path = output_path
        super().__init__(
            source_path,
            f"output path '{output_path}' is already produced by {other_path}",
        )


class UnknownLayoutError(BuildError):
    """A document names a layout that does not exist."""


class UnknownPartialError(UnknownLayoutError):
    """A template includes a partial that does not exist."""


class CyclicIncludeError(BuildError):
    """A template transitively includes itself.

    Attributes:
        chain: Template names forming the cycle, first and last equal.
    """

    def __init__(self, source_path: Path, chain: Sequence[str]):
        self.chain = tuple(chain)
        super().__init__(source_path, "include cycle: " + " -> ".join(self.chain))


class UnboundVariableError(BuildError):
    """A template placeholder has no value in the render context."""


class WriteError(BuildError):
    """Writing the output directory failed."""
