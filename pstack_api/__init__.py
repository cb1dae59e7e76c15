"""
pstack_api package

3D pallet stacking engine: places axis-aligned boxes on a main pallet and a
buffer pallet under several first-fit policies, plus a FastAPI wrapper.

This initializer exposes a small, stable surface:
- __version__: package version string
- get_version(): helper to retrieve the version

The engine lives in `pstack_api.engine`; the HTTP layer in `pstack_api.api`
is imported on demand. Keep this file minimal to avoid import-time side-effects.
"""

from typing import Final

__all__ = ["__version__", "get_version"]

__version__: Final[str] = "0.1.0"


def get_version() -> str:
    """
    Return the package version.
    """
    return __version__
