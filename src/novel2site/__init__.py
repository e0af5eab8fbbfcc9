"""DOCX manuscript to static website converter."""

from .version import __version__

__all__ = ["__version__"]
