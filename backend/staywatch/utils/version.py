from functools import lru_cache
from importlib import metadata
from pathlib import Path

# backend/staywatch/utils/version.py -> repository root
VERSION_FILE = Path(__file__).resolve().parents[3] / "LATEST_VERSION"


@lru_cache(maxsize=1)
def get_version() -> str:
    """LATEST_VERSION in a checkout, the installed distribution's version otherwise."""
    if VERSION_FILE.exists():
        return VERSION_FILE.read_text().strip()
    try:
        return f"v{metadata.version('staywatch')}"
    except metadata.PackageNotFoundError:
        return "v0.1.0-dev"
