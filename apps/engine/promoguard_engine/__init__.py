"""Bot detection and response engine for promoter campaigns."""

__version__ = "0.1.0"
