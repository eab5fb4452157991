"""HTTP read-API over the Mahjong Soul game service."""

__version__ = "0.1.0"
