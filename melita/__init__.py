"""Melita: code-to-flowchart analysis backed by Gemini."""

__version__ = "1.0.0"
