"""chatrelay -- event synchronization between a live messaging session and its consumers."""

__version__ = "0.3.0"
