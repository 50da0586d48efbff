"""Command line interface for PaySync."""
