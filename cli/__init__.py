"""Command-line interface for reportgrid."""
