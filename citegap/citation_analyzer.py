"""Cross-references a bibliography with the citations a document uses."""

import logging
from typing import Dict, List, Optional

from .bibtex_parser import BibEntry, BibTeXParser
from .tex_parser import TexParser


MISSING_ENTRY_TYPE = 'missing'
MISSING_ENTRY_TITLE = '[NOT FOUND IN .BIB FILE]'


class CitationAnalyzer:
    """Views over a .bib file and a .tex file: used, unused and missing citations."""

    def __init__(self, bib_file_path: str, tex_file_path: str,
                 bibtex_parser: Optional[BibTeXParser] = None,
                 tex_parser: Optional[TexParser] = None):
        self.bib_file_path = bib_file_path
        self.bibtex_parser = bibtex_parser or BibTeXParser()
        self.tex_parser = tex_parser or TexParser(tex_file_path)
        self.logger = logging.getLogger(__name__)
        self._bib_entries: Optional[Dict[str, BibEntry]] = None

    def get_bib_entries(self) -> Dict[str, BibEntry]:
        if self._bib_entries is None:
            self._bib_entries = self.bibtex_parser.parse_file(self.bib_file_path)
        return self._bib_entries

    def get_all_bib_entries(self) -> List[BibEntry]:
        """All bibliography records in file order."""
        return list(self.get_bib_entries().values())

    def get_used_citations(self) -> List[str]:
        """Citation keys used in the document, in order of first appearance."""
        return self.tex_parser.get_used_citations()

    def get_used_citations_list(self) -> List[BibEntry]:
        """Records for every used key.

        Keys cited in the document but absent from the bibliography are
        returned as placeholder entries of type 'missing'.
        """
        bib_entries = self.get_bib_entries()
        used = []

        for key in self.get_used_citations():
            entry = bib_entries.get(key)
            if entry is not None:
                used.append(entry)
            else:
                self.logger.debug(f"Citation used but not found in .bib file: {key}")
                used.append(BibEntry(entry_type=MISSING_ENTRY_TYPE, key=key, title=MISSING_ENTRY_TITLE))

        return used

    def get_unused_citations(self) -> List[BibEntry]:
        """Bibliography records the document never cites."""
        used = set(self.get_used_citations())
        return [entry for key, entry in self.get_bib_entries().items() if key not in used]

    def search_unused(self, query: str) -> List[BibEntry]:
        """Case-insensitive search of unused records by key, title or author."""
        query = query.lower()
        return [
            entry for entry in self.get_unused_citations()
            if query in entry.key.lower()
            or query in (entry.title or '').lower()
            or query in (entry.author or '').lower()
        ]

    def get_stats(self) -> Dict[str, int]:
        bib_entries = self.get_bib_entries()
        used = self.get_used_citations()
        used_in_bib = [key for key in used if key in bib_entries]

        return {
            'total_in_bib': len(bib_entries),
            'total_used': len(used),
            'total_unused': len(bib_entries) - len(used_in_bib),
            'missing_from_bib': len(used) - len(used_in_bib)
        }


def is_missing_entry(entry: BibEntry) -> bool:
    """True for placeholders standing in for keys absent from the bibliography."""
    return entry.entry_type == MISSING_ENTRY_TYPE
