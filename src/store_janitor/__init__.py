"""Consistency-preserving maintenance for the graph store and the key-value store."""

__version__ = "0.1.0"
