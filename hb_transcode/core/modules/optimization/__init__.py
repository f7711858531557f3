"""Sampling and quality search."""
