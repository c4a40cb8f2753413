"""Backends that supply the simulated network an experiment observes."""
