"""Carousel Relay: publish image carousels to TikTok."""

__version__ = "1.0.0"
