"""
feedsync

Scheduled ingestion for content feeds: deduplicated item storage, cascading
per-user refresh and retention settings, and tracked background jobs.
"""

__version__ = "1.0.0"
