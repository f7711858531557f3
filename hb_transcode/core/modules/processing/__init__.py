"""Encoder invocation, file handling and batch orchestration."""
