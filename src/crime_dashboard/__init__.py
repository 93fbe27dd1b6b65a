"""Crime statistics services for the RISP 5 command dashboard."""

__version__ = "0.1.0"
