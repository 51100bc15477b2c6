"""
Processor Service - Turns raw job postings into normalized clean records.

The processor reads unprocessed postings from the raw crawler database,
applies per-platform YAML rules (salary, experience level, location, posted
date, description), optionally asks an AI provider when the rules fail, and
writes companies and job posts to the clean database without duplicates.
"""

__version__ = "0.1.0"
