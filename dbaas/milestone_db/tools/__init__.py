"""Command-line tools for the milestone store."""
