"""
Version metadata for zkclaim.

``__version__`` is the semantic version for packaging; ``user_agent()`` is the
value sent to the relay in the ``User-Agent`` header.
"""

from __future__ import annotations

import platform

# Bump this when making a release; use semver (MAJOR.MINOR.PATCH)
__version__ = "0.1.0"


def user_agent() -> str:
    return f"zkclaim/{__version__} python/{platform.python_version()}"


__all__ = ["__version__", "user_agent"]
