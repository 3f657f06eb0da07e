"""Probes package __init__.py"""
from .livestream import LivestreamProbe
from .presence import PresenceProbe

__all__ = ["LivestreamProbe", "PresenceProbe"]
