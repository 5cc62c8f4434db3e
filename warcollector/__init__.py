"""Clash of Clans clan war collector: scheduled collection, JSON stores, participation predictions."""

__version__ = "1.0.0"
