"""Prometheus metrics package."""
