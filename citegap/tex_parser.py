"""LaTeX parser module for extracting the citation keys a document uses."""

import re
import logging
from pathlib import Path
from typing import List, Optional


# \cite, \citep, \citet, \parencite, \textcite, \autocite, \nocite... with optional stars and [pre][post] notes
CITE_PATTERN = re.compile(r'\\[a-zA-Z]*cite[a-zA-Z]*\*?\s*(?:\[[^\]]*\]\s*){0,2}\{([^}]+)\}')
COMMENT_PATTERN = re.compile(r'(?<!\\)%.*$', re.MULTILINE)


def extract_citations(content: str) -> List[str]:
    """Return citation keys in order of first appearance, without duplicates.

    Commented-out text is ignored, as is the \\nocite{*} wildcard.
    """
    content = COMMENT_PATTERN.sub('', content)
    keys = {}

    for match in CITE_PATTERN.finditer(content):
        for key in match.group(1).split(','):
            key = key.strip()
            if key and key != '*':
                keys.setdefault(key, None)

    return list(keys)


class TexParser:
    """Reads a .tex file and exposes the citation keys it references."""

    def __init__(self, tex_file_path: str, encoding: str = 'utf-8'):
        self.tex_file_path = Path(tex_file_path)
        self.encoding = encoding
        self.logger = logging.getLogger(__name__)
        self._used_citations: Optional[List[str]] = None

    def parse(self) -> List[str]:
        """Read the document and extract its citation keys.

        Raises:
            OSError: if the file cannot be read.
        """
        try:
            content = self.tex_file_path.read_text(encoding=self.encoding)
        except OSError as e:
            self.logger.error(f"Error reading .tex file {self.tex_file_path}: {e}")
            raise

        citations = extract_citations(content)
        self.logger.info(f"Found {len(citations)} distinct citation keys in {self.tex_file_path}")
        return citations

    def get_used_citations(self) -> List[str]:
        if self._used_citations is None:
            self._used_citations = self.parse()
        return list(self._used_citations)

    def is_citation_used(self, key: str) -> bool:
        return key in self.get_used_citations()
