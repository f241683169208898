"""appctl — lifecycle manager for compose-based apps on a single host."""

__version__ = "0.1.0"
