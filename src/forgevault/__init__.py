"""forgevault: a versioned artifact registry."""

__version__ = "0.1.0"
