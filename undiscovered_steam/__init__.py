"""Find little-known Steam games by searching the store for random words."""

__version__ = "1.0.0"
