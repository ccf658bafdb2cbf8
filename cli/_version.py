"""Version management using package metadata."""
from __future__ import annotations

from sitewatch.watch_core.config import VERSION

__version__ = VERSION
