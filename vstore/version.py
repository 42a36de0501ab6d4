"""
Version of the installed vstore distribution.

Read from package metadata, so it always matches pyproject.toml. A source
checkout that was never installed reports DEFAULT_VERSION.
"""

from __future__ import annotations

from importlib import metadata

DISTRIBUTION = "vstore"
DEFAULT_VERSION = "0.1.0"


def resolve_version(dist: str = DISTRIBUTION) -> str:
    try:
        return metadata.version(dist)
    except metadata.PackageNotFoundError:
        return DEFAULT_VERSION


__version__ = resolve_version()
