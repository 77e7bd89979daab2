"""Core repository state engine."""
