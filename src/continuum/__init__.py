"""Continuum: shared user memory for conversational AI."""

__version__ = "0.1.0"
