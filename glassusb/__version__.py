"""Version information for glassusb."""

__version__ = "1.0.0"
