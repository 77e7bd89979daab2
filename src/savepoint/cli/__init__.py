"""Command-line interface for savepoint."""
