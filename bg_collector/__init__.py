"""Battlegrounds game collector: observes a live match and emits one record per game."""

from .core.version import COLLECTOR_VERSION as __version__
