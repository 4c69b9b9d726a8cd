"""Fetch a server's root certificate and install it into git's trust bundle."""

__version__ = "0.1.0"
