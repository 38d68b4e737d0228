"""MentalSpace EHR backend and client toolkit."""

__version__ = "0.1.0"
