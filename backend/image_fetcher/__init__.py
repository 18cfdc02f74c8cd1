"""
Image Fetcher Module

Bounded, streaming retrieval of origin images for the resize proxy.

Features:
- Streaming download into a scoped temp file
- Byte-size ceiling with early abort
- MIME allow-list, redirect budget, connect/total timeouts
- DNS vs. origin failure classification
"""

from .client import OriginFetcher, FetchResult, FetchFailure

__all__ = ["OriginFetcher", "FetchResult", "FetchFailure"]
