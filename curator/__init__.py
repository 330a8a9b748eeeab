"""Content normalization, classification and ranking core for curated feeds."""

__version__ = "0.1.0"
