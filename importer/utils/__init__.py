"""
Utility functions for the importer application.

- html.py: fault-tolerant CSS selection and value coercion helpers
"""

from .html import (
    clean_numeric,
    has_markup,
    parse_html,
    safe_select,
    safe_select_one,
    text_of,
)

__all__ = [
    "clean_numeric",
    "has_markup",
    "parse_html",
    "safe_select",
    "safe_select_one",
    "text_of",
]
