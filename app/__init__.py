"""AIOCatalogs: one Stremio manifest for many catalog addons."""

from __future__ import annotations

__version__ = "1.0.0"
