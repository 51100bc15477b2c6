"""
Common utilities shared across Job Crawler services.

This package is intentionally small and focused on pure, dependency-light
helpers (whitespace and HTML cleanup, dedupe keys, domain extraction).
"""
