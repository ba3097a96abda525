"""Synaptide: chat backend with persistent history and preference profiles."""

__version__ = "0.1.0"
