"""Comparison of live and mirror versions of a page."""

import base64
import hashlib
from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from bs4.element import Declaration, Doctype, ProcessingInstruction

from mirrorer.mime import parse_media_type
from mirrorer.models import Page

IGNORED_TAGS = frozenset({"head", "meta", "style", "link", "script"})
NON_TEXT_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)


class ComparisonFailed(Exception):
    """Two pages could not be compared."""


def extract_visible_text(node: Tag) -> str:
    """
    Collect the text a user would see, one text node per line.

    Subtrees of head, meta, style, link and script are skipped.
    """
    lines: list[str] = []

    def walk(element: Tag) -> None:
        for child in element.children:
            if isinstance(child, Tag):
                if child.name not in IGNORED_TAGS:
                    walk(child)
            elif isinstance(child, NavigableString) and not isinstance(child, NON_TEXT_STRINGS):
                text = child.strip()
                if text:
                    lines.append(text)

    walk(node)
    return "\n".join(lines)


def checksum(text: str) -> str:
    return base64.b64encode(hashlib.sha256(text.encode("utf-8")).digest()).decode("ascii")


class PageComparer:
    """Decides whether two versions of a page look the same to a user."""

    def have_same_body(self, page_a: Page, page_b: Page) -> bool:
        """
        Compare two pages.

        Pages with different media types are never the same. HTML pages are
        compared on their visible text only; anything else, including a page
        with no content type, is compared as a plain string.

        Raises:
            ComparisonFailed: If a content type or HTML body can't be parsed
        """
        media_a = self._media_type(page_a)
        media_b = self._media_type(page_b)

        if media_a and media_b and media_a != media_b:
            return False

        if media_a == "text/html" and media_b == "text/html":
            return checksum(self._visible_text(page_a)) == checksum(self._visible_text(page_b))

        return page_a.body == page_b.body

    def _media_type(self, page: Page) -> str:
        if not page.content_type:
            return ""
        try:
            return parse_media_type(page.content_type)
        except ValueError as e:
            raise ComparisonFailed(f"invalid content type {page.content_type!r}") from e

    def _visible_text(self, page: Page) -> str:
        try:
            soup = BeautifulSoup(page.body, "lxml")
        except Exception as e:
            raise ComparisonFailed(f"failed to parse HTML: {e}") from e
        return extract_visible_text(soup)
