"""Routing convergence monitor: convergence detection and fault injection over a simulated network."""

__version__ = "0.1.0"
