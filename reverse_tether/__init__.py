"""Reverse Tether - use an Android phone's mobile data from a Linux host over USB."""

try:
    from reverse_tether._version import version as __version__
except ImportError:
    __version__ = "0.0.0.dev0"
