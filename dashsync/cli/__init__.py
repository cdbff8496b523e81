"""Command-line interface for dashsync."""
