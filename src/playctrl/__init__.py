"""Discover and remotely control a media-player server on the local network."""

__version__ = "0.1.0"
