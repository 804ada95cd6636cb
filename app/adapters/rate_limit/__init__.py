"""Rate limit counter stores.

This package provides a small abstraction layer so the limiter can run on a
shared SQL store in production and an in-memory store in single-process
development, without changing the API layer.
"""
