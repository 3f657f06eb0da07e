"""Media package __init__.py"""
from .playlist import PlaylistStore

__all__ = ["PlaylistStore"]
