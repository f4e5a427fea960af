#!/usr/bin/env python3
"""
Wallpaper Downloader - Extraction Engine

The scraping half of the backends boils down to one operation: find the
first element matching a CSS selector and read either one of its attributes
or its text. Selector strings live with each backend as data; this module
only knows how to compile and apply them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import soupsieve
from bs4 import BeautifulSoup

from errors import ParseError

logger = logging.getLogger("wallpaper_dl")

HTML_PARSER = "lxml"


def parse_document(html: str) -> BeautifulSoup:
    """Parse an HTML page once so several rules can be applied to it."""
    return BeautifulSoup(html, HTML_PARSER)


@dataclass(frozen=True)
class SelectAttr:
    """
    A CSS selector paired with the attribute to read.

    `attr=None` reads the element's text instead of an attribute
    (title-style rules).
    """
    css: str
    attr: Optional[str] = None
    compiled: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def parse(cls, css: str, attr: Optional[str] = None) -> "SelectAttr":
        """
        Compile the selector up front.

        Raises:
            ParseError: The selector itself is malformed.
        """
        try:
            compiled = soupsieve.compile(css)
        except soupsieve.SelectorSyntaxError as e:
            raise ParseError(f"Malformed CSS selector {css!r}: {e}") from e
        return cls(css=css, attr=attr, compiled=compiled)


def extract(document: BeautifulSoup, rule: SelectAttr) -> Optional[str]:
    """
    Apply one rule to a parsed document.

    Args:
        document: Parsed HTML page.
        rule: Selector/attribute pair.

    Returns:
        The attribute value (or stripped element text), None when the element
        or attribute is missing or empty.
    """
    element = rule.compiled.select_one(document) if rule.compiled else document.select_one(rule.css)
    if element is None:
        return None

    if rule.attr is None:
        value = element.get_text(" ", strip=True)
    else:
        value = element.get(rule.attr)
        if isinstance(value, list):  # multi-valued attributes such as class
            value = " ".join(value)

    if not value:
        return None
    return value.strip() if isinstance(value, str) else value


def require(document: BeautifulSoup, rule: SelectAttr, url: Optional[str] = None) -> str:
    """Like extract(), but a missing value is a ParseError."""
    value = extract(document, rule)
    if value is None:
        raise ParseError(f"HTML element or attribute not found: {rule.css} [{rule.attr or 'text'}]", url)
    return value
