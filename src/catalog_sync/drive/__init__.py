"""
Google Drive source: API client and recursive folder crawler.
"""

from catalog_sync.drive.client import (
    DriveApiClient,
    direct_download_url,
    extract_folder_id,
)
from catalog_sync.drive.crawler import ContainerRegistry, CrawlResult, DirectoryCrawler

__all__ = [
    "ContainerRegistry",
    "CrawlResult",
    "DirectoryCrawler",
    "DriveApiClient",
    "direct_download_url",
    "extract_folder_id",
]
