"""Boundary adapters for the supported invocation environments."""
