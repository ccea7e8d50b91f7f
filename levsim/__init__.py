"""Leveraged position lifecycle simulator with an execution cost model."""

__version__ = "0.1.0"
