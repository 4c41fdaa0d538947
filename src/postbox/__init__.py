"""Postbox package initialisation."""

from importlib import metadata


def _discover_version() -> str:
    """Return the installed package version, falling back to a dev marker."""
    try:
        return metadata.version("postbox")
    except metadata.PackageNotFoundError:  # pragma: no cover - source checkout without install
        return "0.0.0"


__all__ = ["__version__"]
__version__ = _discover_version()
