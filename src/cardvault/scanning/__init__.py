"""Scan deduplication and the scan-to-collection pipeline."""

from .deduplicator import ScanDeduplicator, ScanVerdict
from .pipeline import LorcanaScanPipeline, ScanPipeline

__all__ = [
    "LorcanaScanPipeline",
    "ScanDeduplicator",
    "ScanPipeline",
    "ScanVerdict",
]
