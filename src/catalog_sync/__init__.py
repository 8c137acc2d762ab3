"""
Catalog sync: batch image retrieval and repackaging.

Given named groups (SKUs) of source references, retrieves every referenced
image through fallback fetch strategies, names the results deterministically
per group and bundles them into one archive with a CSV run report.

Sources:
    web      direct image links
    drive    public Google Drive folders, crawled recursively
    gallery  Postimg galleries and image pages
    dropbox  Dropbox share links, including shared-folder ZIPs
"""

__version__ = "1.0.0"
