"""Release pipeline for IntelliJ Platform plugins."""

from ijrelease.__version__ import __version__

__all__ = ["__version__"]
