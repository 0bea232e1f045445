"""Table-driven finite-state device simulator."""

__version__ = "1.0.0"
