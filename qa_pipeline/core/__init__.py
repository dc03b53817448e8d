"""Core exception hierarchy."""
