"""Persistence services. Functions flush; the caller commits."""
