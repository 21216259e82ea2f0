"""Azure VM right-sizing pipeline: batched metrics collection, classification and AI recommendations."""

__version__ = "0.1.0"
