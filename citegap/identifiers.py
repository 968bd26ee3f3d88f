"""Identifier extraction for bibliography records.

Derives the normalized identifiers (DOI, arXiv id, ISBN, normalized title,
year) that both the metadata client and the gap analyzer key on. Each
identifier is produced by an ordered tuple of extractor functions; the first
one returning a non-empty value wins.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .bibtex_parser import BibEntry
from .utils import clean_doi, normalize_title


DOI_URL_PATTERN = re.compile(r'doi\.org/(10\.[^\s?#]+)', re.IGNORECASE)
ARXIV_URL_PATTERN = re.compile(r'arxiv\.org/(?:abs/|pdf/)?(\d{4}\.\d{4,5})(?:v\d+)?', re.IGNORECASE)
ARXIV_ID_PATTERN = re.compile(r'^(?:arxiv:)?\s*(\d{4}\.\d{4,5}|[a-z\-]+(?:\.[A-Z]{2})?/\d{7})(?:v\d+)?$', re.IGNORECASE)


@dataclass(frozen=True)
class Identifiers:
    """Normalized identifiers derived from a single bibliography record."""
    title: Optional[str] = None
    normalized_title: str = ""
    doi: Optional[str] = None
    arxiv: Optional[str] = None
    isbn: Optional[str] = None
    year: Optional[str] = None

    @property
    def title_year_key(self) -> Optional[str]:
        """Title plus year, used to disambiguate reprints and same-titled works."""
        if self.normalized_title and self.year:
            return f"{self.normalized_title}|{self.year}"
        return None


Extractor = Callable[[BibEntry], Optional[str]]


def _doi_from_field(entry: BibEntry) -> Optional[str]:
    return clean_doi(entry.doi) or None


def _doi_from_url(entry: BibEntry) -> Optional[str]:
    if not entry.url:
        return None
    match = DOI_URL_PATTERN.search(entry.url)
    return match.group(1) if match else None


def _arxiv_from_eprint(entry: BibEntry) -> Optional[str]:
    if not entry.eprint:
        return None
    match = ARXIV_ID_PATTERN.match(entry.eprint.strip())
    return match.group(1) if match else None


def _arxiv_from_url(entry: BibEntry) -> Optional[str]:
    if not entry.url:
        return None
    match = ARXIV_URL_PATTERN.search(entry.url)
    return match.group(1) if match else None


def _isbn_from_field(entry: BibEntry) -> Optional[str]:
    if not entry.isbn:
        return None
    return re.sub(r'[\s\-]', '', entry.isbn) or None


DOI_EXTRACTORS: Sequence[Extractor] = (_doi_from_field, _doi_from_url)
ARXIV_EXTRACTORS: Sequence[Extractor] = (_arxiv_from_eprint, _arxiv_from_url)
ISBN_EXTRACTORS: Sequence[Extractor] = (_isbn_from_field,)


def first_match(entry: BibEntry, extractors: Sequence[Extractor]) -> Optional[str]:
    """Apply extractors in order and return the first non-empty value."""
    for extractor in extractors:
        value = extractor(entry)
        if value:
            return value
    return None


def extract_identifiers(entry: BibEntry) -> Identifiers:
    """Derive normalized identifiers from a bibliography record.

    Missing fields yield None (or an empty normalized title); this function
    never raises for incomplete records.
    """
    return Identifiers(
        title=entry.title or None,
        normalized_title=normalize_title(entry.title),
        doi=first_match(entry, DOI_EXTRACTORS),
        arxiv=first_match(entry, ARXIV_EXTRACTORS),
        isbn=first_match(entry, ISBN_EXTRACTORS),
        year=(entry.year or '').strip() or None,
    )
