"""On-demand image transformation cache in front of an origin store."""

__version__ = "0.1.0"
