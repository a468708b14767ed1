"""artifex: resilient AI request layer for turning repositories into visual artifacts."""

__version__ = "0.1.0"
