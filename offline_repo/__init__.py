"""Offline Debian repository builder: resolve, download and index packages for an installer image."""

__version__ = "0.1.0"
