"""
Lead generation pipeline.

Turns ingested LinkedIn posts into qualified leads through a staged,
rate-limited enrichment pipeline.
"""

__version__ = "0.1.0"
