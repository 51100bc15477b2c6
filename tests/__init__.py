"""Job Processor Test Suite.

This package contains the unit tests for the job processor.

Test Structure:
- unit/: Unit tests for individual functions and classes; the database layer
  is exercised with patched psycopg2 connections and the in-memory FakeStore
"""

__version__ = "0.1.0"
