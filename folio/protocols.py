"""Protocol definitions for Folio.

These protocols describe the seams where the pipeline can be extended with
new body formats, metadata sources or derived index pages.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .collections import SiteIndex
    from .content import Document
    from .renderers import Heading


@runtime_checkable
class ContentRenderer(Protocol):
    """Protocol for converting a document body to HTML.

    Implementations handle one markup language each.
    """

    @abstractmethod
    def can_render(self, path: Path) -> bool:
        """Check if this renderer can handle the given file."""
        ...

    @abstractmethod
    def render(self, content: str) -> tuple[str, list[Heading]]:
        """Render content to HTML.

        Args:
            content: Source body without front matter.

        Returns:
            Tuple of (rendered HTML, list of headings for TOC).
        """
        ...

    @property
    @abstractmethod
    def source_type(self) -> str:
        """Return the source type identifier (e.g., 'markdown', 'html')."""
        ...


@runtime_checkable
class MetadataExtractor(Protocol):
    """Protocol for extracting one kind of metadata from a document body."""

    @abstractmethod
    def extract(self, body: str, path: Path) -> dict[str, Any]:
        """Extract metadata from content.

        Args:
            body: Document body without front matter.
            path: Path to the source file.

        Returns:
            Dictionary of extracted metadata.
        """
        ...


@runtime_checkable
class IndexPageSource(Protocol):
    """Protocol for derived pages computed from the site index.

    Implementations describe pages such as tag listings or the archive,
    which are rendered through a layout like ordinary documents.
    """

    @abstractmethod
    def documents(self, index: SiteIndex) -> Sequence[Document]:
        """Return the virtual documents this source contributes."""
        ...
