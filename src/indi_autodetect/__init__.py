"""USB equipment auto-detection and INDI server supervision."""

__version__ = "0.1.0"
