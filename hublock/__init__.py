"""Hub Lock: proof-of-presence verification and reward engine."""

__version__ = "1.0.0"
