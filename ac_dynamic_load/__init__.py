"""Device communication and polling for the AC charging test bench."""

__version__ = "0.1.0"
