"""Poolfleet: spread one workload template over a topology of node pools."""

__version__ = "0.1.0"
