"""HTML to Markdown conversion for documentation fragments.

BeautifulSoup strips permalink anchors, heading icons and scripts first;
markdownify then renders the cleaned tree with ATX headings and fenced
code blocks.
"""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup
from markdownify import ATX, markdownify

logger = logging.getLogger(__name__)

PERMALINK_SELECTORS = "a.anchor, a.headerlink, a[aria-label*='permalink']"
HEADING_ICON_SELECTORS = "h1 svg, h2 svg, h3 svg, h4 svg, h5 svg, h6 svg"

_BLANK_LINES = re.compile(r"\n{3,}")
_TEXT_BEFORE_FENCE = re.compile(r"([^\n])```")
_TEXT_AFTER_FENCE = re.compile(r"```([A-Za-z0-9_+-]*)[ \t]+(\S)")


def code_language(pre) -> str:
    """Language tag of a <pre> block from a ``language-*`` or ``lang-*`` class."""
    for element in [pre] + pre.find_all("code", limit=1):
        for css_class in element.get("class") or []:
            for prefix in ("language-", "lang-"):
                if css_class.startswith(prefix):
                    return css_class[len(prefix):]
    return ""


def post_process(markdown: str) -> str:
    """Collapse runs of blank lines, trim, and put code fences on their own line.

    A fence keeps its language tag (```` ```java ````); anything else that
    shares a line with a fence is moved to the next line.
    """
    markdown = _BLANK_LINES.sub("\n\n", markdown)
    markdown = markdown.strip()
    markdown = _TEXT_AFTER_FENCE.sub(r"```\1\n\2", markdown)
    markdown = _TEXT_BEFORE_FENCE.sub(r"\1\n```", markdown)
    return markdown


class HtmlToMarkdownConverter:
    """Converts documentation HTML to normalized Markdown.

    Conversion never raises: failures are logged and yield an empty string.
    """

    def clean_html(self, html: str) -> BeautifulSoup:
        """Remove permalink anchors, icon glyphs in headings and scripts."""
        soup = BeautifulSoup(html, "html.parser")

        for element in soup.select(PERMALINK_SELECTORS):
            element.decompose()

        for anchor in soup.select("a[href^='#']"):
            if not anchor.get_text(strip=True) or anchor.select_one("svg, img") is not None:
                anchor.decompose()

        for element in soup.select(HEADING_ICON_SELECTORS):
            element.decompose()

        for element in soup.select("script, style"):
            element.decompose()

        return soup

    def _to_markdown(self, soup: BeautifulSoup) -> str:
        body = soup.body or soup
        return markdownify(
            body.decode_contents(),
            heading_style=ATX,
            code_language_callback=code_language,
            bullets="-",
            escape_underscores=False,
            escape_misc=False,
        )

    def convert(self, html: Optional[str]) -> str:
        """Convert an HTML fragment or document to Markdown."""
        if not html or not html.strip():
            logger.warning("Cannot convert empty HTML")
            return ""

        try:
            markdown = post_process(self._to_markdown(self.clean_html(html)))
            logger.debug(f"Converted HTML to Markdown: {len(html)} chars -> {len(markdown)} chars")
            return markdown
        except Exception as e:
            logger.error(f"Error converting HTML to Markdown: {e}", exc_info=True)
            return ""

    def convert_with_selector(self, html: Optional[str], selector: Optional[str]) -> str:
        """Convert the first element matching ``selector``.

        Falls back to converting the whole document when the selector is
        empty, invalid or matches nothing.
        """
        if not html or not html.strip():
            logger.warning("Cannot convert empty HTML")
            return ""

        if not selector or not selector.strip():
            return self.convert(html)

        try:
            selected = BeautifulSoup(html, "html.parser").select_one(selector)
        except Exception as e:
            logger.error(f"Error selecting '{selector}': {e}")
            return self.convert(html)

        if selected is None:
            logger.warning(f"Selector '{selector}' not found in HTML, converting entire document")
            return self.convert(html)

        logger.debug(f"Found element with selector '{selector}', converting to markdown")
        return self.convert(str(selected))
