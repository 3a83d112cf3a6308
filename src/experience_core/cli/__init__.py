"""Command-line interface for the experience core."""
