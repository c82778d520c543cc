"""
Version utility for MediaConnect.

Reads the version from installed package metadata, falling back to
pyproject.toml when running from a source checkout.
"""

from pathlib import Path

DISTRIBUTION_NAME = "mediaconnect-client"


def get_version() -> str:
    """
    Get the package version.

    Priority:
    1. importlib.metadata.version() - when installed as a package
    2. pyproject.toml - when running from source

    Returns:
        Version string (e.g., "0.4.0") or "dev" if unavailable
    """
    try:
        from importlib.metadata import PackageNotFoundError, version

        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        pass

    try:
        import tomllib

        current = Path(__file__).resolve()
        for parent in current.parents:
            pyproject_path = parent / "pyproject.toml"
            if pyproject_path.exists():
                with open(pyproject_path, "rb") as f:
                    data = tomllib.load(f)
                return data.get("project", {}).get("version", "dev")
    except (OSError, ValueError):
        pass

    return "dev"


__version__ = get_version()
