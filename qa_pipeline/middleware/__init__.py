"""Request and logging middleware."""
