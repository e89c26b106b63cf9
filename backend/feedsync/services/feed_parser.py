import feedparser
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
import logging

from feedsync.core.exceptions import FeedParseError

logger = logging.getLogger(__name__)

RSS = "rss"
ATOM = "atom"


class FeedParser:
    """Turns raw RSS/Atom bytes into item dicts"""

    @staticmethod
    def detect_content_kind(version: str) -> Optional[str]:
        """Map a feedparser version string (rss20, atom10, ...) to rss/atom"""
        if not version:
            return None
        if version.startswith("atom"):
            return ATOM
        if version.startswith("rss") or version.startswith("cdf"):
            return RSS
        return None

    @staticmethod
    def parse(raw_content: bytes, content_kind: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Parse feed content into items.

        Args:
            raw_content: Response body as fetched
            content_kind: Expected kind ("rss" or "atom"); a mismatch is only logged

        Returns:
            List of item dicts with keys guid, title, link, description,
            content, media, pub_date and published

        Raises:
            FeedParseError: If the content is not a usable feed
        """
        feed = feedparser.parse(raw_content)

        if feed.bozo and not feed.entries:
            bozo_msg = str(feed.bozo_exception) if hasattr(feed, 'bozo_exception') else "Invalid feed format"
            raise FeedParseError(f"Feed parsing error: {bozo_msg}")

        detected = FeedParser.detect_content_kind(feed.get('version', ''))
        if detected is None and not feed.entries:
            raise FeedParseError("Unsupported feed format")
        if content_kind and detected and content_kind != detected:
            logger.warning(f"Expected {content_kind} content but parsed {detected}")

        items = []
        for entry in feed.entries:
            item = FeedParser._parse_entry(entry)
            if item:
                items.append(item)
        return items

    @staticmethod
    def _parse_entry(entry: Any) -> Optional[Dict[str, Any]]:
        """Parse a single feed entry into an item dict"""
        # Get GUID (unique identifier)
        guid = entry.get('id') or entry.get('guid') or entry.get('link', '')
        if not guid:
            logger.warning(f"Skipping entry with no identifier: {entry.get('title', 'unknown')}")
            return None

        description = entry.get('summary', '') or entry.get('description', '')

        content = None
        if entry.get('content'):
            content = entry.content[0].get('value') or None

        # Source-declared date string plus feedparser's normalized parse of it
        pub_date = entry.get('published') or entry.get('updated')
        published = None
        for field in ('published_parsed', 'updated_parsed'):
            time_struct = entry.get(field)
            if time_struct:
                try:
                    published = datetime(*time_struct[:6], tzinfo=timezone.utc)
                    break
                except (TypeError, ValueError):
                    continue

        return {
            "guid": guid,
            "title": entry.get('title', ''),
            "link": FeedParser._extract_link(entry),
            "description": description or None,
            "content": content,
            "media": FeedParser._extract_media(entry),
            "pub_date": pub_date,
            "published": published,
        }

    @staticmethod
    def _extract_link(entry: Any) -> str:
        for link in entry.get('links', []):
            if link.get('rel') == 'alternate' and link.get('href'):
                return link['href']
        return entry.get('link', '')

    @staticmethod
    def _extract_media(entry: Any) -> Optional[Dict[str, Any]]:
        """Pick the first media:content or media:thumbnail reference"""
        for field in ('media_content', 'media_thumbnail'):
            references = entry.get(field)
            if references and references[0].get('url'):
                media = references[0]
                return {
                    "url": media.get('url'),
                    "type": media.get('type'),
                    "width": media.get('width'),
                    "height": media.get('height'),
                }
        return None
