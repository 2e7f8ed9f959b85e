"""Desktop shell that drives an external backup engine through the core command bridge."""

__version__ = "0.1.0"
