"""Weekly pharmacy rota assignment and editing engine."""

__version__ = "0.1.0"
