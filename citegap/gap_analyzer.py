"""Citation gap analysis.

Looks up every source paper the user cites, collects the references of
those papers, drops references already in the user's bibliography, and
ranks the remainder by how many distinct sources cite them.
"""

import uuid
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .bibtex_parser import BibEntry
from .citation_analyzer import CitationAnalyzer, is_missing_entry
from .identifiers import extract_identifiers
from .metadata_client import MetadataAPIError, RemotePaper, SemanticScholarClient
from .utils import extract_last_name, normalize_title


# Stop looking up papers after this many errors without a single success
MAX_ERRORS_WITHOUT_SUCCESS = 5
HIGH_PRIORITY_COUNT = 3


@dataclass
class ReferenceFrequency:
    """A candidate reference and the distinct sources that cite it."""
    reference: RemotePaper
    count: int = 0
    cited_by: List[str] = field(default_factory=list)

    def add_citing_source(self, citation_key: str) -> None:
        if citation_key not in self.cited_by:
            self.cited_by.append(citation_key)
            self.count += 1


@dataclass
class SourceReferences:
    """A resolved source paper and the reference list it contributes."""
    paper: RemotePaper
    references: List[RemotePaper]


@dataclass
class GapAnalysisResult:
    gaps: List[ReferenceFrequency]
    total_analyzed: int
    summary: Dict[str, int]


@dataclass
class ExistingPapersIndex:
    """Lookup tables over the user's bibliography, one per identifier kind."""
    by_doi: Dict[str, BibEntry] = field(default_factory=dict)
    by_isbn: Dict[str, BibEntry] = field(default_factory=dict)
    by_normalized_title: Dict[str, BibEntry] = field(default_factory=dict)
    by_title_and_year: Dict[str, BibEntry] = field(default_factory=dict)

    @classmethod
    def build(cls, entries: Sequence[BibEntry]) -> 'ExistingPapersIndex':
        index = cls()
        for entry in entries:
            index.add(entry)
        return index

    def add(self, entry: BibEntry) -> None:
        identifiers = extract_identifiers(entry)

        if identifiers.doi:
            self.by_doi[identifiers.doi.lower()] = entry
        if identifiers.isbn:
            self.by_isbn[identifiers.isbn] = entry
        if identifiers.normalized_title:
            self.by_normalized_title[identifiers.normalized_title] = entry
        if identifiers.title_year_key:
            self.by_title_and_year[identifiers.title_year_key] = entry

    def contains(self, ref: RemotePaper) -> bool:
        """Whether a reference is already in the bibliography.

        Checks DOI, then title and year, then title alone; the first hit wins.
        """
        doi = ref.any_doi
        if doi and doi.lower() in self.by_doi:
            return True

        normalized_title = normalize_title(ref.title)
        if normalized_title and ref.year and f"{normalized_title}|{ref.year}" in self.by_title_and_year:
            return True

        # Title alone can produce false positives for generic titles
        return bool(normalized_title) and normalized_title in self.by_normalized_title


def create_reference_key(ref: RemotePaper) -> str:
    """Deduplication key: DOI, else title and year, else title."""
    doi = ref.any_doi
    if doi:
        return f"doi:{doi.lower()}"

    normalized_title = normalize_title(ref.title)
    if normalized_title and ref.year:
        return f"title_year:{normalized_title}|{ref.year}"
    if normalized_title:
        return f"title:{normalized_title}"

    # Nothing to deduplicate on, so never merge with another reference
    return f"unknown:{uuid.uuid4().hex}"


def generate_suggested_key(reference: RemotePaper) -> str:
    """Citation key from the first author's last name and the year, e.g. smith2020."""
    year = reference.year or ''

    if reference.authors:
        last_name = extract_last_name(reference.authors[0])
        if last_name:
            return f"{last_name}{year}"

    return f"unknown{year}"


def generate_bibtex(reference: RemotePaper, suggested_key: str,
                    cited_by: Optional[Sequence[str]] = None) -> str:
    """Render a reference as a BibTeX @article entry."""
    year = reference.year or 'YEAR'
    title = reference.title or 'TITLE'
    authors = ' and '.join(reference.authors) if reference.authors else 'AUTHOR'

    lines = [
        f"@article{{{suggested_key},",
        f"  title={{{title}}},",
        f"  author={{{authors}}},",
        f"  year={{{year}}},",
    ]

    if reference.journal:
        lines.append(f"  journal={{{reference.journal}}},")

    doi = reference.any_doi
    if doi:
        lines.append(f"  doi={{{doi}}},")

    citation_count = reference.citation_count if reference.citation_count is not None else 'N/A'
    note = f"Citation count: {citation_count}"
    if cited_by:
        note += f"; Referenced by: {', '.join(cited_by)}"
    lines.append(f"  note={{{note}}}")
    lines.append("}")

    return '\n'.join(lines)


def render_gap(gap: ReferenceFrequency) -> str:
    """BibTeX entry for a gap, with its suggested key and citing sources."""
    return generate_bibtex(gap.reference, generate_suggested_key(gap.reference), gap.cited_by)


class GapAnalyzer:
    """Finds papers frequently referenced by the user's sources but missing from the bibliography."""

    def __init__(self, citation_analyzer: CitationAnalyzer, client: SemanticScholarClient):
        self.citation_analyzer = citation_analyzer
        self.client = client
        self.logger = logging.getLogger(__name__)

    def get_references_for_citations(self, citations: Sequence[BibEntry],
                                     limit_papers: Optional[int] = None,
                                     quiet: bool = False) -> Dict[str, SourceReferences]:
        """Look up each source sequentially and collect its reference list.

        Returns a mapping from source citation key to its resolved paper and
        references, in lookup order. Sources that fail, are not found, or have
        no accessible references are left out.
        """
        citations = [c for c in citations if not is_missing_entry(c)]
        if limit_papers and limit_papers > 0:
            citations = citations[:limit_papers]
            if not quiet:
                print(f"Limited to first {limit_papers} papers.")

        references_map: Dict[str, SourceReferences] = {}
        success_count = 0
        error_count = 0

        if not quiet:
            print(f"Analyzing {len(citations)} papers (about 1 request per second)...")
            print("This may take a few minutes due to rate limiting.\n")

        for index, citation in enumerate(citations, start=1):
            if not quiet:
                print(f"[{index}/{len(citations)}] Looking up: {citation.key}...", end='', flush=True)

            try:
                paper = self.client.find_paper(citation)
            except MetadataAPIError as e:
                error_count += 1
                self.logger.warning(f"Lookup failed for {citation.key} ({citation.title}): {e}")
                if not quiet:
                    print(f" error: {e}")

                if error_count > MAX_ERRORS_WITHOUT_SUCCESS and success_count == 0:
                    self.logger.error("Too many errors without a successful lookup, stopping early")
                    if not quiet:
                        print("\nMany consecutive errors detected. The API might be temporarily unavailable.")
                        print("Continuing with partial results.")
                    break
                continue

            cache_indicator = ' (cached)' if paper is not None and paper.from_cache else ''
            if paper is not None and paper.references:
                references_map[citation.key] = SourceReferences(paper=paper, references=paper.references)
                success_count += 1
                if not quiet:
                    print(f" found {len(paper.references)} references{cache_indicator}")
            elif paper is not None and paper.reference_count:
                if not quiet:
                    print(f" references restricted by publisher ({paper.reference_count} refs exist){cache_indicator}")
            elif not quiet:
                print(f" no references found{cache_indicator}")

        if not quiet:
            print(f"\nLookup complete: {success_count} successful, {error_count} failed")
            stats = self.client.cache.get_stats()
            print(f"Cache: {stats['durable_entries']} entries, {stats['total_size_bytes'] // 1024} KB")

        self.logger.info(f"Collected references for {len(references_map)} papers ({error_count} errors)")
        return references_map

    def build_existing_papers_index(self) -> ExistingPapersIndex:
        """Index the records the document actually cites."""
        used = [e for e in self.citation_analyzer.get_used_citations_list() if not is_missing_entry(e)]
        return ExistingPapersIndex.build(used)

    def analyze_gaps(self, references_map: Dict[str, SourceReferences],
                     min_citations: int = 2) -> List[ReferenceFrequency]:
        """Aggregate references across sources and keep those cited often enough."""
        existing_papers = self.build_existing_papers_index()
        frequencies: Dict[str, ReferenceFrequency] = {}

        for citation_key, source in references_map.items():
            for ref in source.references:
                if not ref.title:
                    continue
                if existing_papers.contains(ref):
                    continue

                ref_key = create_reference_key(ref)
                if ref_key not in frequencies:
                    frequencies[ref_key] = ReferenceFrequency(reference=ref)
                frequencies[ref_key].add_citing_source(citation_key)

        gaps = [data for data in frequencies.values() if data.count >= min_citations]
        # Stable: equal counts keep first-seen order
        gaps.sort(key=lambda g: g.count, reverse=True)
        return gaps

    def find_gaps(self, min_citations: int = 2, limit_papers: Optional[int] = None,
                  quiet: bool = False, include_unused: bool = False) -> GapAnalysisResult:
        """Run the full analysis.

        Args:
            min_citations: Minimum number of distinct citing sources for a gap
            limit_papers: Only look up the first N source papers
            quiet: Suppress progress output
            include_unused: Analyze every bibliography record, not only cited ones
        """
        if not quiet:
            print("Starting citation gap analysis...\n")
        self.client.quiet = quiet

        if include_unused:
            citations = self.citation_analyzer.get_all_bib_entries()
        else:
            citations = self.citation_analyzer.get_used_citations_list()

        references_map = self.get_references_for_citations(citations, limit_papers, quiet)
        gaps = self.analyze_gaps(references_map, min_citations)

        return GapAnalysisResult(
            gaps=gaps,
            total_analyzed=len(references_map),
            summary={
                'high_priority': sum(1 for g in gaps if g.count >= HIGH_PRIORITY_COUNT),
                'medium_priority': sum(1 for g in gaps if g.count == 2),
                'total_gaps': len(gaps)
            }
        )
