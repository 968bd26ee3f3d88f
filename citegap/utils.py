"""Shared utility functions for text normalization and identifier cleanup."""

import re
from typing import Optional


def normalize_title(title: Optional[str]) -> str:
    """Normalize a title for comparison.

    Lowercases, replaces punctuation with spaces and collapses whitespace, so
    that "Deep Learning: A Survey" and "deep learning - a survey" compare
    equal.

    Args:
        title: The title string to normalize

    Returns:
        Normalized title, or an empty string for missing titles
    """
    if not title:
        return ""

    clean = title.lower()
    clean = re.sub(r'[^\w\s]', ' ', clean)
    clean = re.sub(r'\s+', ' ', clean).strip()

    return clean


def clean_latex_formatting(text: Optional[str]) -> str:
    """Remove LaTeX commands and protective braces from text.

    Args:
        text: Raw field text from a BibTeX file

    Returns:
        Text with \\command{arg} reduced to arg and braces removed
    """
    if not text:
        return ""

    # \textbf{text} -> text
    text = re.sub(r'\\[a-zA-Z]+\{([^{}]*)\}', r'\1', text)
    # Accent commands like \"{o} or \'e keep their letter
    text = re.sub(r'\\[\'"`^~=.]\{?([a-zA-Z])\}?', r'\1', text)
    text = re.sub(r'\\[a-zA-Z]+\s?', '', text)
    # Nested protective braces need two passes
    text = re.sub(r'\{([^{}]*)\}', r'\1', text)
    text = re.sub(r'\{([^{}]*)\}', r'\1', text)
    text = re.sub(r'\s+', ' ', text).strip()

    return text


def clean_doi(doi: Optional[str]) -> str:
    """Strip resolver prefixes from a DOI.

    Args:
        doi: DOI in any of the common forms (bare, doi:, https://doi.org/...)

    Returns:
        Bare DOI such as 10.1234/abc, or an empty string
    """
    if not doi:
        return ""

    clean = re.sub(r'^(doi:)?\s*(https?://)?((dx\.)?doi\.org/)?', '', doi.strip(), flags=re.IGNORECASE)
    return clean.strip()


def is_valid_doi(doi: Optional[str]) -> bool:
    """Basic DOI format validation (10.xxxx/yyyy)."""
    if not doi:
        return False
    return doi.startswith('10.') and '/' in doi[3:]


def extract_last_name(author_name: Optional[str]) -> str:
    """Return the last whitespace-separated token of an author name, lowercased.

    "Jane Q. Doe" -> "doe". Names in "Last, First" form are not special-cased;
    the provider returns display names in "First Last" order.
    """
    if not author_name:
        return ""

    tokens = author_name.split()
    if not tokens:
        return ""

    return re.sub(r'[^\w-]', '', tokens[-1].lower())
