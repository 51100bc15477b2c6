"""Job Crawler Data Processor Package.

This package contains the services that turn scraped job postings into the
normalized job database:
- processor: platform-specific ETL from the raw store into the clean store
- common: small text helpers shared by the processor and operator scripts
"""

__version__ = "0.1.0"
