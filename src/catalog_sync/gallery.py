"""
Postimg gallery expansion.

Gallery pages are read through a JSON relay (``{"contents": "<html>"}``);
image page links are collected from the parsed markup and each page is
resolved to its direct image URL through the ``og:image`` meta tag.
"""

import json
import logging
import re
from typing import List, Optional, Sequence

from bs4 import BeautifulSoup

from catalog_sync.config import DEFAULT_GALLERY_PROXY_TEMPLATE, SyncConfig
from catalog_sync.fetch import FetchResolver, encode_reference
from core.errors.exceptions import FatalError, OperationCancelled, ValidationError
from core.logging.utilities import LoggedClass
from core.resilience.cancellation import CancellationToken

# Image pages are a single path segment on postimg.cc
_PAGE_LINK = re.compile(r"https://postimg\.cc/[a-zA-Z0-9]+")


def is_gallery_link(url: str) -> bool:
    return "/gallery/" in url


def is_page_link(url: str) -> bool:
    return "postimg.cc/" in url


def is_direct_link(url: str) -> bool:
    return "i.postimg.cc" in url


def _parse(markup: str) -> BeautifulSoup:
    return BeautifulSoup(markup or "", "html.parser")


def extract_page_links(markup: str, gallery_url: str = "") -> List[str]:
    """Unique image page links in document order, excluding the gallery itself."""
    links: List[str] = []
    for anchor in _parse(markup).find_all("a", href=True):
        link = anchor["href"].strip()
        if not _PAGE_LINK.fullmatch(link):
            continue
        if link != gallery_url and link not in links:
            links.append(link)
    return links


def extract_og_image(markup: str) -> Optional[str]:
    tag = _parse(markup).find("meta", attrs={"property": "og:image"})
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


class GalleryResolver(LoggedClass):
    """
    Expand galleries and resolve image pages to direct URLs.

    Args:
        fetcher: Resolver whose session is used for relay requests
        proxy_template: JSON relay URL template with a {url} placeholder
    """

    log_component = "gallery"

    def __init__(
        self,
        fetcher: FetchResolver,
        proxy_template: str = DEFAULT_GALLERY_PROXY_TEMPLATE,
    ):
        self.fetcher = fetcher
        self.proxy_template = proxy_template
        super().__init__()

    @classmethod
    def from_config(cls, config: SyncConfig, fetcher: FetchResolver) -> "GalleryResolver":
        return cls(fetcher, config.gallery_proxy_template)

    async def _page_contents(self, url: str, token: Optional[CancellationToken]) -> str:
        relay_url = self.proxy_template.replace("{url}", encode_reference(url))
        fetched = await self.fetcher.fetch_once(relay_url, token)
        try:
            data = json.loads(fetched.payload.decode("utf-8", errors="replace"))
        except ValueError as e:
            raise ValidationError("Gallery relay returned invalid JSON", cause=e)
        if not isinstance(data, dict):
            raise ValidationError("Gallery relay returned unexpected payload")
        return str(data.get("contents") or "")

    async def expand(
        self, gallery_url: str, token: Optional[CancellationToken] = None
    ) -> List[str]:
        """
        Image page links of a gallery. Unreadable galleries yield an empty
        list; cancellation propagates.
        """
        try:
            contents = await self._page_contents(gallery_url, token)
        except (OperationCancelled, FatalError):
            raise
        except Exception as e:
            self._log_exception(
                e, "Gallery expansion failed", level=logging.WARNING, reference=gallery_url
            )
            return []

        links = extract_page_links(contents, gallery_url)
        self._log(logging.DEBUG, "Gallery expanded", reference=gallery_url, children=len(links))
        return links

    async def resolve_direct(
        self, page_url: str, token: Optional[CancellationToken] = None
    ) -> str:
        """Direct image URL for an image page; the page URL when unresolvable."""
        if is_direct_link(page_url):
            return page_url
        try:
            contents = await self._page_contents(page_url, token)
        except (OperationCancelled, FatalError):
            raise
        except Exception as e:
            self._log_exception(
                e, "Page resolution failed", level=logging.DEBUG, reference=page_url
            )
            return page_url
        return extract_og_image(contents) or page_url

    async def collect_links(
        self, references: Sequence[str], token: Optional[CancellationToken] = None
    ) -> List[str]:
        """Flatten a group's references into unique image page links."""
        links: List[str] = []
        for reference in references:
            if is_gallery_link(reference):
                candidates = await self.expand(reference, token)
            elif is_page_link(reference):
                candidates = [reference]
            else:
                continue
            for link in candidates:
                if link not in links:
                    links.append(link)
        return links
