"""BibTeX parser module for reading bibliography records into structured data."""

import re
import logging
from typing import Dict, List, Optional
from dataclasses import dataclass, field
from pathlib import Path

from .utils import clean_doi, clean_latex_formatting


@dataclass
class BibEntry:
    """Represents a single bibliographic entry with structured fields."""
    entry_type: str
    key: str
    title: Optional[str] = None
    author: Optional[str] = None
    year: Optional[str] = None
    doi: Optional[str] = None
    isbn: Optional[str] = None
    url: Optional[str] = None
    eprint: Optional[str] = None
    journal: Optional[str] = None
    raw_fields: Dict[str, str] = field(default_factory=dict)

    @property
    def authors(self) -> List[str]:
        """Individual author names split on the BibTeX 'and' separator."""
        if not self.author:
            return []
        return [name.strip() for name in re.split(r'\s+and\s+', self.author, flags=re.IGNORECASE)
                if name.strip()]


# Entry types that carry no bibliographic record
NON_RECORD_TYPES = {'comment', 'string', 'preamble'}


def find_entry_end(content: str, start: int) -> int:
    """Return the index just past the closing brace of the entry starting at `start`.

    Braces inside quoted values and escaped characters are ignored. If the
    entry is unterminated, the end of the content is returned.
    """
    brace_count = 0
    in_quotes = False
    escape_next = False

    for i in range(start, len(content)):
        char = content[i]

        if escape_next:
            escape_next = False
            continue
        if char == '\\':
            escape_next = True
            continue
        if char == '"' and brace_count == 1:
            in_quotes = not in_quotes
            continue
        if in_quotes:
            continue

        if char == '{':
            brace_count += 1
        elif char == '}':
            brace_count -= 1
            if brace_count == 0:
                return i + 1

    return len(content)


class BibTeXParser:
    """Parser for BibTeX files with graceful handling of malformed entries."""

    ENTRY_START = re.compile(r'@(\w+)\s*\{\s*([^,\s}]+)\s*,?', re.IGNORECASE)

    def __init__(self, encoding: str = 'utf-8'):
        self.encoding = encoding
        self.entries: Dict[str, BibEntry] = {}
        self.logger = logging.getLogger(__name__)

        # Field aliases seen across BibTeX and BibLaTeX exports
        self.field_mappings = {
            'title': ['title', 'booktitle'],
            'author': ['author', 'authors', 'editor'],
            'year': ['year', 'date'],
            'doi': ['doi'],
            'isbn': ['isbn'],
            'url': ['url', 'link', 'howpublished'],
            'eprint': ['eprint', 'arxivid', 'arxiv'],
            'journal': ['journal', 'journaltitle'],
        }

    def parse_file(self, filepath: str) -> Dict[str, BibEntry]:
        """Parse a BibTeX file into a key -> entry mapping in file order.

        Raises:
            OSError: if the file cannot be read.
        """
        file_path = Path(filepath)

        try:
            content = file_path.read_text(encoding=self.encoding)
        except UnicodeDecodeError:
            self.logger.warning(f"{self.encoding} decode failed, trying latin-1 encoding for: {filepath}")
            content = file_path.read_text(encoding='latin-1')
        except OSError as e:
            self.logger.error(f"Error reading BibTeX file {filepath}: {e}")
            raise

        self.logger.info(f"Successfully read BibTeX file: {filepath}")
        return self.parse_string(content)

    def parse_string(self, content: str) -> Dict[str, BibEntry]:
        """Parse BibTeX content and return structured entries keyed by citation key."""
        self.entries = {}
        content = self._clean_content(content)

        pos = 0
        while True:
            match = self.ENTRY_START.search(content, pos)
            if not match:
                break

            entry_end = find_entry_end(content, match.start())
            pos = max(entry_end, match.end())

            entry_type = match.group(1).lower()
            if entry_type in NON_RECORD_TYPES:
                continue

            body_end = entry_end - 1 if content[entry_end - 1:entry_end] == '}' else entry_end
            body = content[match.end():body_end]
            try:
                entry = self._parse_entry(entry_type, match.group(2).strip(), body)
            except Exception as e:
                self.logger.warning(f"Error parsing entry {match.group(2)}: {e}")
                continue

            if entry.key in self.entries:
                self.logger.warning(f"Duplicate citation key, keeping first: {entry.key}")
                continue
            self.entries[entry.key] = entry

        self.logger.info(f"Successfully parsed {len(self.entries)} BibTeX entries")
        return self.entries

    def _parse_entry(self, entry_type: str, key: str, fields_str: str) -> BibEntry:
        """Parse a single entry body into a structured BibEntry."""
        raw_fields = self._parse_fields(fields_str)

        if not raw_fields:
            self.logger.debug(f"No fields found for entry: {key}")

        entry = BibEntry(entry_type=entry_type, key=key, raw_fields=raw_fields)
        self._extract_structured_fields(entry, raw_fields)
        return entry

    def _extract_structured_fields(self, entry: BibEntry, raw_fields: Dict[str, str]) -> None:
        """Extract structured fields from raw BibTeX fields."""
        title = self._get_field_value(raw_fields, self.field_mappings['title'])
        if title:
            entry.title = clean_latex_formatting(title)

        author = self._get_field_value(raw_fields, self.field_mappings['author'])
        if author:
            entry.author = clean_latex_formatting(author)

        year = self._get_field_value(raw_fields, self.field_mappings['year'])
        if year:
            entry.year = self._extract_year(year)

        doi = self._get_field_value(raw_fields, self.field_mappings['doi'])
        if doi:
            entry.doi = clean_doi(doi)

        entry.isbn = self._get_field_value(raw_fields, self.field_mappings['isbn'])

        url = self._get_field_value(raw_fields, self.field_mappings['url'])
        if url:
            entry.url = re.sub(r'\\url\{([^}]*)\}', r'\1', url).strip()

        entry.eprint = self._get_field_value(raw_fields, self.field_mappings['eprint'])

        journal = self._get_field_value(raw_fields, self.field_mappings['journal'])
        if journal:
            entry.journal = clean_latex_formatting(journal)

    def _get_field_value(self, fields: Dict[str, str], field_names: List[str]) -> Optional[str]:
        """Get the first available field value from a list of possible field names."""
        for field_name in field_names:
            if field_name in fields and fields[field_name].strip():
                return fields[field_name].strip()
        return None

    def _clean_content(self, content: str) -> str:
        """Remove comment lines."""
        lines = []
        for line in content.split('\n'):
            if line.strip().startswith('%'):
                continue
            lines.append(line)

        return '\n'.join(lines)

    def _parse_fields(self, fields_str: str) -> Dict[str, str]:
        """Parse the fields section of a BibTeX entry."""
        fields = {}

        for token in self._tokenize_fields(fields_str):
            field_name, sep, value = token.partition('=')
            if not sep:
                continue
            field_name = field_name.strip().lower()
            clean_value = self._clean_field_value(value)
            if field_name and clean_value:
                fields[field_name] = clean_value

        return fields

    def _tokenize_fields(self, fields_str: str) -> List[str]:
        """Split the fields string on top-level commas, respecting braces and quotes."""
        tokens = []
        current_token = []
        brace_count = 0
        in_quotes = False
        escape_next = False

        for char in fields_str:
            if escape_next:
                escape_next = False
                current_token.append(char)
                continue
            if char == '\\':
                escape_next = True
                current_token.append(char)
                continue

            if char == '"' and brace_count == 0:
                in_quotes = not in_quotes
                current_token.append(char)
            elif char == '{' and not in_quotes:
                brace_count += 1
                current_token.append(char)
            elif char == '}' and not in_quotes:
                brace_count -= 1
                current_token.append(char)
            elif char == ',' and brace_count == 0 and not in_quotes:
                if current_token:
                    tokens.append(''.join(current_token).strip())
                    current_token = []
            else:
                current_token.append(char)

        if current_token:
            tokens.append(''.join(current_token).strip())

        return [token for token in tokens if token]

    def _clean_field_value(self, value: str) -> str:
        """Clean field value by removing outer braces, quotes and extra whitespace."""
        if not value:
            return ""

        value = value.strip()

        if value.startswith('"') and value.endswith('"') and len(value) > 1:
            value = value[1:-1].strip()
        elif value.startswith('{') and value.endswith('}') and self._braces_balanced(value[1:-1]):
            value = value[1:-1].strip()

        return re.sub(r'\s+', ' ', value).strip()

    @staticmethod
    def _braces_balanced(text: str) -> bool:
        """True if `text` never closes a brace it did not open ({A} and {B} is, A} and {B is not)."""
        depth = 0
        for char in text:
            if char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth < 0:
                    return False
        return depth == 0

    def _extract_year(self, year_str: str) -> Optional[str]:
        """Extract year from date/year field."""
        year_match = re.search(r'\b(1[5-9]|20)\d{2}\b', year_str)
        if year_match:
            return year_match.group()

        return year_str.strip()

    def get_entry_by_key(self, key: str) -> Optional[BibEntry]:
        """Get entry by its BibTeX key."""
        return self.entries.get(key)
