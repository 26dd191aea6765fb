"""Folio static site generator.

This package turns a directory of Markdown and HTML documents with YAML front matter
into a static website, using Jinja2 layouts and partials.

The pipeline is a single pass:
- Content store: loads documents and their typed front matter.
- Template resolver: maps layout names to template trees and rejects include cycles.
- Renderer: converts Markdown bodies and substitutes them into layouts.
- Site assembler: builds tag and archive indices, renders every page and writes the output.

The main entry point is the CLI module.
"""

__all__ = ["__version__"]
__version__ = "0.2.0"
