"""Package version module.

The version is declared here once; pyproject.toml reads it from this module.
"""

VERSION = "1.0.0"


def get_version() -> str:
    """Get the package version string (e.g. '1.0.0')."""
    return VERSION
