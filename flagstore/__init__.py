"""In-memory feature flag store with source priorities and change notifications."""

__version__ = "0.1.0"
__all__ = ["store"]