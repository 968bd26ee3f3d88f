"""In-place editing of a BibTeX file: inserting DOI fields into existing entries."""

import re
import logging
from pathlib import Path

from .bibtex_parser import BibTeXParser, find_entry_end


class BibTeXEditor:
    """Edits the raw text of a BibTeX file, preserving everything it does not touch."""

    def __init__(self, file_path: str, encoding: str = 'utf-8'):
        self.file_path = Path(file_path)
        self.encoding = encoding
        self.logger = logging.getLogger(__name__)
        self.content = self.file_path.read_text(encoding=encoding)
        self.parser = BibTeXParser(encoding=encoding)
        self.entries = self.parser.parse_string(self.content)

    def _find_entry_span(self, entry_key: str):
        pattern = re.compile(r'@\w+\s*\{\s*' + re.escape(entry_key) + r'\s*,')
        match = pattern.search(self.content)
        if not match:
            return None
        return match.start(), find_entry_end(self.content, match.start())

    def has_entry(self, entry_key: str) -> bool:
        return entry_key in self.entries

    def has_doi(self, entry_key: str) -> bool:
        entry = self.entries.get(entry_key)
        return bool(entry and entry.doi)

    def add_doi(self, entry_key: str, doi: str) -> bool:
        """Insert a doi field into an entry.

        Returns:
            True if the field was added, False if the entry already has a DOI.

        Raises:
            KeyError: if the entry is not in the file.
        """
        span = self._find_entry_span(entry_key)
        if span is None:
            raise KeyError(f"Entry {entry_key} not found")

        if self.has_doi(entry_key):
            return False

        start, end = span
        entry_text = self.content[start:end]
        closing = entry_text.rstrip().rfind('}')
        body = entry_text[:closing].rstrip()

        comma = '' if body.endswith(',') else ','
        updated = f"{body}{comma}\n  doi = {{{doi}}}\n}}"

        self.content = self.content[:start] + updated + self.content[end:]
        self.entries = self.parser.parse_string(self.content)
        self.logger.debug(f"Added DOI {doi} to {entry_key}")
        return True

    def save(self) -> None:
        self.file_path.write_text(self.content, encoding=self.encoding)
        self.logger.info(f"Saved {self.file_path}")
