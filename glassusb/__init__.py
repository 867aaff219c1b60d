"""Create bootable Windows installation USB drives from UDF disk images."""

from glassusb.__version__ import __version__

__all__ = ["__version__"]
