"""tariffgate - HS classification decision pipeline."""

from .version import __version__

__all__ = ["__version__"]
