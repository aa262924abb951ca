"""
HTML metadata extractor for external links.

Fetches the linked page with httpx and reads document-level metadata from
its head with BeautifulSoup:

- <title> and og:title
- <meta name="author">, "description", "keywords"
- OpenGraph fields (og:type, og:site_name, og:url, og:image, og:description)
- <html lang="...">

A page that no longer exists (404/410) or carries no usable metadata is a
"nothing found" outcome (returns None). Transport errors and other error
responses raise ExtractionFailed.
"""

from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from metaharvest.config import settings
from ..exceptions import ExtractionFailed
from ..resource_types import URL
from .base import BaseMetadataExtractor

# <meta name="..."> fields and the key they are stored under
NAMED_META_FIELDS = {
    "author": "author",
    "description": "description",
    "keywords": "keywords",
    "generator": "generator",
}

OPENGRAPH_FIELDS = ("title", "type", "site_name", "url", "image", "description")

GONE_STATUS_CODES = (404, 410)


def parse_html_metadata(html: str) -> Dict[str, Any]:
    """
    Parse document metadata from HTML.

    Returns:
        Dict of found fields; empty when the document carries no metadata
    """
    soup = BeautifulSoup(html, "html.parser")
    metadata: Dict[str, Any] = {}

    if soup.title and soup.title.string:
        title = soup.title.string.strip()
        if title:
            metadata["title"] = title

    for tag in soup.find_all("meta"):
        content = (tag.get("content") or "").strip()
        if not content:
            continue

        name = (tag.get("name") or "").strip().lower()
        if name in NAMED_META_FIELDS:
            key = NAMED_META_FIELDS[name]
            if key == "keywords":
                metadata[key] = [k.strip() for k in content.split(",") if k.strip()]
            else:
                metadata.setdefault(key, content)
            continue

        prop = (tag.get("property") or "").strip().lower()
        if prop.startswith("og:") and prop[3:] in OPENGRAPH_FIELDS:
            metadata.setdefault("opengraph", {})[prop[3:]] = content

    # Fall back to OpenGraph for the core fields
    opengraph = metadata.get("opengraph", {})
    if "title" not in metadata and opengraph.get("title"):
        metadata["title"] = opengraph["title"]
    if "description" not in metadata and opengraph.get("description"):
        metadata["description"] = opengraph["description"]

    html_tag = soup.find("html")
    if html_tag is not None and html_tag.get("lang"):
        metadata["language"] = html_tag["lang"].strip()

    return metadata


class HtmlMetadataExtractor(BaseMetadataExtractor):

    @property
    def name(self) -> str:
        return "htmlmeta"

    @property
    def display_name(self) -> str:
        return "HTML Metadata"

    @property
    def description(self) -> str:
        return "Title, author, description and OpenGraph fields of linked web pages."

    @property
    def supported_resource_types(self) -> List[str]:
        return [URL]

    def can_extract(self, resource: Any, resource_type: str) -> bool:
        if not super().can_extract(resource, resource_type):
            return False
        url = (resource.external_url or "").strip().lower()
        return url.startswith("http://") or url.startswith("https://")

    def _build_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            settings.http_request_timeout,
            connect=settings.http_connect_timeout,
        )
        return httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": settings.http_user_agent},
        )

    async def extract(self, resource: Any, resource_type: str) -> Optional[Dict[str, Any]]:
        url = resource.external_url.strip()
        try:
            async with self._build_client() as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise ExtractionFailed(f"Failed to fetch {url}: {e}") from e

        if response.status_code in GONE_STATUS_CODES:
            self._logger.info(f"Link {resource.id} returned {response.status_code}: {url}")
            return None
        if response.status_code >= 400:
            raise ExtractionFailed(f"Failed to fetch {url}: HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "")
        if "html" not in content_type.lower():
            self._logger.debug(f"Link {resource.id} is not HTML ({content_type})")
            return None

        metadata = parse_html_metadata(response.text)
        if not metadata:
            return None

        metadata["url"] = str(response.url)
        metadata["format"] = content_type.split(";")[0].strip()
        return metadata
