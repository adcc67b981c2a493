"""Unattended Light Phone notes <-> completion service bridge."""

__version__ = "0.3.0"
