"""Top-level package for :mod:`reposync`.

The package syncs documentation and API definitions from source-control
repositories into a vector store and exposes its version metadata.

Example:
    >>> from reposync import __version__
    >>> __version__.split(".")[0]
    '0'
"""

from importlib import metadata

try:
    __version__ = metadata.version("reposync")
except metadata.PackageNotFoundError:  # pragma: no cover - source checkouts
    __version__ = "0.0.0"

__all__ = ["__version__"]
