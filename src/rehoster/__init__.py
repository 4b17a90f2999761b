"""Rehost remotely-linked images in an HTML document onto an image gallery."""

__version__ = "0.1.0"
