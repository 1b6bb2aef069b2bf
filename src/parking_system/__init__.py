"""Parking ticket lifecycle and fare computation"""

__version__ = "1.0.0"
