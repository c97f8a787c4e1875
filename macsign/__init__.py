"""macOS application signing and Mac App Store installer packaging."""

__version__ = "0.3.0"
