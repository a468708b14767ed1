"""Core Layer: application services and the command handler."""
