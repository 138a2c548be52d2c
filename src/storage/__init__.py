"""Replica storage package."""
