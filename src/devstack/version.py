"""Version information for devstack."""

from importlib import metadata


def get_version() -> str:
    """Get the installed devstack version.

    Returns:
        str: Version string from package metadata, or a development fallback
    """
    try:
        return metadata.version("devstack")
    except metadata.PackageNotFoundError:
        return "0.1.0-dev"
