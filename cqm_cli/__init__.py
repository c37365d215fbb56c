"""Command line interface for cqm."""
