"""Per-bundle story cache and source health tracking."""

__version__ = "0.1.0"
