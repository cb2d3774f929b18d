"""Auto-deployment service for gateway hosts."""

__version__ = "0.1.0"
