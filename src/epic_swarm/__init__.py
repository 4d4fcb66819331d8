"""Swarm orchestration for decomposed parent tasks."""

__version__ = "0.3.0"

__all__ = ["__version__"]
