"""Command-line interface (claude-monitor)."""
