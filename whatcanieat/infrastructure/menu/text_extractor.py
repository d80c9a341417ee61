"""
Menu text extraction.

Heuristics for turning pasted menu text or a menu web page into
MenuItem objects.
"""

import asyncio
import html
import re
from typing import List, Optional

import aiohttp
import structlog

from whatcanieat.domain.analysis.models import MenuItem
from whatcanieat.domain.shared.errors import RequestTimeoutError, TransportError

logger = structlog.get_logger(__name__)

MAX_MENU_TEXT_CHARS = 5000

_LINE_SPLIT_RE = re.compile(r"\r?\n|•|\*")
# "Name - description", "Name – description" or "Name: description"
_NAME_DESCRIPTION_RE = re.compile(r"^(.*?)(?:\s+[-–]\s+|\s*:\s*)(.+)$")
_HEADER_RE = re.compile(r"^[A-Z\s]{2,}$")


def strip_html(document: str) -> str:
    """
    Convert an HTML page to plain text, one block element per line.

    Scripts and styles are dropped, entities unescaped.
    """
    text = re.sub(r"<(script|style)[\s\S]*?</\1>", " ", document, flags=re.IGNORECASE)
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</(p|li|h\d|div|section|article|tr)>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"\s+/\s+", " / ", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"[ \t]*\n[ \t]*", "\n", text)
    text = re.sub(r"\n{2,}", "\n", text)
    return text.strip()


class MenuTextExtractor:
    """
    Extract menu items from free text or a URL.

    Example:
        >>> extractor = MenuTextExtractor()
        >>> items = extractor.parse_menu_text("MAINS\\nPad Thai - rice noodles, tofu")
        >>> [(i.name, i.description) for i in items]
        [('Pad Thai', 'rice noodles, tofu')]
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._session = session
        self.timeout_seconds = timeout_seconds

    def parse_menu_text(self, raw_text: str) -> List[MenuItem]:
        """
        Split text into menu items.

        Lines are split on newlines, bullets and asterisks. Short
        ALL-CAPS lines are treated as section headers and skipped;
        duplicate names (case-insensitive) are dropped.

        Args:
            raw_text: Pasted or extracted menu text

        Returns:
            Items with sequential ids starting at "1"
        """
        lines = [line.strip() for line in _LINE_SPLIT_RE.split(raw_text)]

        items: List[MenuItem] = []
        seen: set[str] = set()
        for line in lines:
            if len(line) < 2:
                continue

            match = _NAME_DESCRIPTION_RE.match(line)
            name = (match.group(1) if match else line).strip()
            description = match.group(2).strip() if match else None

            if not name:
                continue
            if _HEADER_RE.match(name) and len(name.split()) <= 4:
                continue
            if name.lower() in seen:
                continue

            seen.add(name.lower())
            items.append(
                MenuItem(
                    id=str(len(items) + 1),
                    name=name,
                    description=description,
                    raw_text=line,
                )
            )
        return items

    async def extract_from_url(self, url: str) -> List[MenuItem]:
        """
        Download a menu page and parse its text.

        Text is capped at 5000 characters before parsing.

        Raises:
            TransportError: Download failed, timed out or was not decodable
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            if self._session is not None:
                page = await self._fetch(self._session, url, timeout)
            else:
                async with aiohttp.ClientSession() as session:
                    page = await self._fetch(session, url, timeout)
        except aiohttp.ClientError as e:
            raise TransportError(f"Failed to fetch menu from {url}: {e}") from e
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"Failed to fetch menu from {url}: timeout after {self.timeout_seconds:g}s"
            ) from e
        except UnicodeDecodeError as e:
            raise TransportError(f"Failed to fetch menu from {url}: undecodable page ({e.reason})") from e

        text = strip_html(page)[:MAX_MENU_TEXT_CHARS]
        items = self.parse_menu_text(text)
        logger.info("Extracted menu from URL", url=url, items=len(items))
        return items

    async def _fetch(
        self, session: aiohttp.ClientSession, url: str, timeout: aiohttp.ClientTimeout
    ) -> str:
        async with session.get(url, timeout=timeout) as response:
            if response.status >= 400:
                raise TransportError(f"Failed to fetch menu from {url}: HTTP {response.status}", status=response.status)
            return await response.text()
