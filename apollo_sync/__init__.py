"""Sync Apollo/Sunshine game-streaming app catalogs with a local apps.json."""

__version__ = "0.1.0"
