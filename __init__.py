"""Tiered background job scheduler for compute-intensive analysis jobs."""

__version__ = "0.1.0"
