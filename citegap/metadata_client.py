"""Metadata client for resolving bibliography records to remote papers.

Semantic Scholar is the primary provider. Its public API allows one request
per second, so every network call goes through a single rate-limit watermark
and is issued sequentially. Crossref is queried as a fallback when Semantic
Scholar knows a paper has references but withholds the list (publisher
restriction). The arXiv API is used to map arXiv ids to published DOIs.
"""

import json
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

import arxiv
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .bibtex_parser import BibEntry
from .cache import APICache, NOT_FOUND
from .identifiers import extract_identifiers
from .utils import clean_doi, is_valid_doi


PAPER_FIELDS = 'paperId,title,authors,year,citationCount,referenceCount,journal,externalIds'
REFERENCE_FIELDS = ','.join([
    PAPER_FIELDS,
    'references',
    'references.title',
    'references.authors',
    'references.year',
    'references.citationCount',
    'references.externalIds',
])

USER_AGENT = 'citegap/1.0'


class MetadataAPIError(Exception):
    """A single metadata lookup failed (network, HTTP status or malformed body)."""


class RateLimitExceededError(MetadataAPIError):
    """The provider kept answering 429 after all retries."""


@dataclass
class RemotePaper:
    """Paper metadata returned by a provider, possibly with its reference list."""
    title: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    year: Optional[int] = None
    doi: Optional[str] = None
    paper_id: Optional[str] = None
    external_ids: Dict[str, Any] = field(default_factory=dict)
    citation_count: Optional[int] = None
    reference_count: Optional[int] = None
    journal: Optional[str] = None
    references: List['RemotePaper'] = field(default_factory=list)
    source: Optional[str] = None  # Which API provided the data
    from_cache: bool = False

    @property
    def any_doi(self) -> Optional[str]:
        """DOI from the paper's own field or the provider's external ids."""
        return self.doi or (self.external_ids or {}).get('DOI') or None

    @property
    def has_restricted_references(self) -> bool:
        return bool(self.reference_count) and not self.references


def parse_semantic_scholar_paper(data: Dict[str, Any], from_cache: bool = False) -> RemotePaper:
    """Parse a Semantic Scholar paper object into a RemotePaper."""
    if not isinstance(data, dict):
        raise MetadataAPIError(f"Unexpected paper payload type: {type(data).__name__}")

    external_ids = data.get('externalIds') or {}
    journal = data.get('journal') or {}

    paper = RemotePaper(
        title=data.get('title'),
        authors=[a.get('name') for a in data.get('authors') or [] if isinstance(a, dict) and a.get('name')],
        year=data.get('year'),
        doi=external_ids.get('DOI'),
        paper_id=data.get('paperId'),
        external_ids=external_ids,
        citation_count=data.get('citationCount'),
        reference_count=data.get('referenceCount'),
        journal=journal.get('name') if isinstance(journal, dict) else None,
        source='semantic_scholar',
        from_cache=from_cache,
    )

    for ref in data.get('references') or []:
        # Semantic Scholar returns null entries for references it could not resolve
        if isinstance(ref, dict):
            paper.references.append(parse_semantic_scholar_paper(ref, from_cache))

    return paper


class CrossrefClient:
    """Secondary provider used only to recover restricted reference lists."""

    def __init__(self, base_url: str = "https://api.crossref.org/works",
                 user_agent: str = "citegap/1.0 (mailto:contact@example.com)",
                 cache: Optional[APICache] = None, max_retries: int = 2,
                 backoff_factor: float = 0.5, timeout: int = 10):
        self.base_url = base_url.rstrip('/')
        self.cache = cache
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

        self.session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"],
            backoff_factor=backoff_factor
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        self.session.headers.update({
            'User-Agent': user_agent,
            'Accept': 'application/json'
        })

    def get_references(self, doi: str) -> List[RemotePaper]:
        """Fetch and normalize the reference list Crossref holds for a DOI.

        Raises:
            MetadataAPIError: on network errors, non-200 statuses other than 404,
                or a malformed body.
        """
        url = f"{self.base_url}/{quote(clean_doi(doi), safe='/')}"

        cached = self.cache.get(url) if self.cache else None
        if cached is not None:
            return [] if cached == NOT_FOUND else self._parse_references(cached)

        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise MetadataAPIError(f"Crossref request failed: {e}") from e

        if response.status_code == 404:
            if self.cache:
                self.cache.set(url, NOT_FOUND)
            return []
        if response.status_code != 200:
            raise MetadataAPIError(f"Crossref HTTP {response.status_code}")

        try:
            work = response.json().get('message') or {}
            references = work.get('reference') or []
        except (ValueError, AttributeError) as e:
            raise MetadataAPIError(f"Failed to parse Crossref response: {e}") from e

        if self.cache:
            self.cache.set(url, references)
        return self._parse_references(references)

    def _parse_references(self, references: List[Dict[str, Any]]) -> List[RemotePaper]:
        if not isinstance(references, list):
            raise MetadataAPIError("Crossref reference list is not an array")

        parsed = []
        for ref in references:
            if not isinstance(ref, dict):
                continue
            try:
                paper = self._parse_reference(ref)
            except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
                self.logger.debug(f"Skipping malformed Crossref reference {ref.get('key')}: {e}")
                continue
            # Keep entries that can be matched: a DOI, or a title with authors
            if paper.doi or (paper.title and paper.authors):
                parsed.append(paper)
        return parsed

    def _parse_reference(self, ref: Dict[str, Any]) -> RemotePaper:
        """Normalize one Crossref `reference` item into the RemotePaper shape."""
        title = None
        for title_field in ('article-title', 'title', 'volume-title', 'chapter-title', 'series-title'):
            if ref.get(title_field):
                title = ref[title_field]
                break

        authors = []
        if isinstance(ref.get('author'), list):
            for author in ref['author']:
                if isinstance(author, dict):
                    name = f"{author.get('given', '')} {author.get('family', '')}".strip()
                else:
                    name = str(author).strip()
                authors.append(name or 'Unknown author')
        elif ref.get('author'):
            # Unstructured references carry the first author as a plain string
            authors.append(str(ref['author']))

        year = None
        if ref.get('year'):
            year = self._parse_year(ref['year'])
        elif isinstance(ref.get('issued'), dict):
            date_parts = ref['issued'].get('date-parts') or [[]]
            if isinstance(date_parts[0], list) and date_parts[0]:
                year = self._parse_year(date_parts[0][0])

        doi = ref.get('DOI')
        return RemotePaper(
            title=title,
            authors=authors,
            year=year,
            doi=doi,
            external_ids={'DOI': doi} if doi else {},
            citation_count=None,  # Crossref has no per-reference citation counts
            journal=ref.get('journal-title'),
            source='crossref',
        )

    @staticmethod
    def _parse_year(value: Any) -> Optional[int]:
        try:
            return int(str(value)[:4])
        except (TypeError, ValueError):
            return None


class ArxivClient:
    """Resolves arXiv identifiers to the DOI of the published version."""

    def __init__(self, rate_limit: float = 3.0, max_retries: int = 3):
        self.logger = logging.getLogger(__name__)
        self.client = arxiv.Client(
            page_size=1,
            delay_seconds=rate_limit,
            num_retries=max_retries
        )

    def lookup_doi(self, arxiv_id: str) -> Optional[str]:
        """Return the journal DOI arXiv records for an id, if any."""
        if not arxiv_id:
            return None

        try:
            search = arxiv.Search(id_list=[arxiv_id], max_results=1)
            result = next(self.client.results(search), None)
        except Exception as e:
            self.logger.warning(f"arXiv lookup failed for {arxiv_id}: {e}")
            return None

        if result is None or not result.doi:
            self.logger.debug(f"No DOI recorded on arXiv for {arxiv_id}")
            return None
        return clean_doi(result.doi)


class SemanticScholarClient:
    """Rate-limited, caching Semantic Scholar client with Crossref fallback.

    Construct one instance per run and pass it to every caller: the rate
    limit watermark lives on the instance, and two instances in one process
    would together exceed the provider's ceiling.
    """

    def __init__(self, api_key: Optional[str] = None, cache: Optional[APICache] = None,
                 base_url: str = "https://api.semanticscholar.org",
                 rate_limit: float = 1.1, max_retries: int = 4,
                 base_backoff: float = 3.0, max_backoff: float = 30.0,
                 timeout: int = 15, crossref: Optional[CrossrefClient] = None,
                 arxiv_client: Optional[ArxivClient] = None):
        self.api_key = api_key
        self.cache = cache if cache is not None else APICache()
        self.base_url = base_url.rstrip('/')
        self.rate_limit = rate_limit
        self.max_retries = max_retries
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.timeout = timeout
        self.crossref = crossref if crossref is not None else CrossrefClient(cache=self.cache)
        self.arxiv_client = arxiv_client
        self.quiet = False
        self.logger = logging.getLogger(__name__)

        self.session = requests.Session()
        headers = {
            'User-Agent': USER_AGENT,
            'Accept': 'application/json'
        }
        if api_key:
            headers['x-api-key'] = api_key
            self.logger.debug(f"Using Semantic Scholar API key {api_key[:8]}...")
        else:
            self.logger.debug("Using Semantic Scholar public API (no key provided)")
        self.session.headers.update(headers)

        self.last_request_time = 0.0
        self.request_count = 0

    def _rate_limit(self) -> None:
        """Sleep until the minimum interval since the previous request has passed."""
        elapsed = time.time() - self.last_request_time
        if elapsed < self.rate_limit:
            time.sleep(self.rate_limit - elapsed)
        self.last_request_time = time.time()
        self.request_count += 1

        if self.request_count % 50 == 0:
            self.logger.info(f"Semantic Scholar: Made {self.request_count} requests")

    def _backoff_time(self, attempt: int) -> float:
        return min(self.base_backoff * (2 ** attempt), self.max_backoff)

    def _make_request(self, path: str) -> Tuple[Optional[Dict[str, Any]], bool]:
        """GET a Graph API path, returning (data, from_cache).

        `data` is None when the provider answered 404. Both successes and
        404s are cached under the exact path.

        Raises:
            RateLimitExceededError: if 429 persists past `max_retries` retries.
            MetadataAPIError: for any other failure of this request.
        """
        cached = self.cache.get(path)
        if cached is not None:
            return (None if cached == NOT_FOUND else cached), True

        url = f"{self.base_url}{path}"

        for attempt in range(self.max_retries + 1):
            self._rate_limit()

            try:
                response = self.session.get(url, timeout=self.timeout)
            except requests.exceptions.Timeout as e:
                raise MetadataAPIError("Request timeout") from e
            except requests.exceptions.RequestException as e:
                raise MetadataAPIError(f"Request failed: {e}") from e

            if response.status_code == 200:
                try:
                    data = response.json()
                except (json.JSONDecodeError, ValueError) as e:
                    raise MetadataAPIError(f"Failed to parse JSON: {e}") from e
                if not isinstance(data, dict):
                    raise MetadataAPIError("Failed to parse JSON: expected an object")
                self.cache.set(path, data)
                return data, False

            if response.status_code == 404:
                self.cache.set(path, NOT_FOUND)
                return None, False

            if response.status_code == 429:
                if attempt < self.max_retries:
                    wait_time = self._backoff_time(attempt)
                    self.logger.warning(f"Rate limited by Semantic Scholar, waiting {wait_time}s (attempt {attempt + 1})")
                    if not self.quiet:
                        print(f"    Rate limit hit, backing off for {wait_time:g}s...")
                    time.sleep(wait_time)
                    continue
                raise RateLimitExceededError(f"Rate limit exceeded after {self.max_retries} retries")

            raise MetadataAPIError(f"HTTP {response.status_code}: {response.text[:200]}")

    def search_paper(self, title: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Search papers by title and return the raw result objects."""
        query = urlencode({'query': title, 'limit': limit, 'fields': PAPER_FIELDS})
        data, _ = self._make_request(f"/graph/v1/paper/search?{query}")
        if not data:
            return []
        results = data.get('data') or []
        return [item for item in results if isinstance(item, dict)]

    def _get_paper(self, paper_ref: str) -> Optional[RemotePaper]:
        path = f"/graph/v1/paper/{quote(paper_ref, safe=':/.')}?fields={REFERENCE_FIELDS}"
        data, from_cache = self._make_request(path)
        if data is None:
            return None
        try:
            return parse_semantic_scholar_paper(data, from_cache=from_cache)
        except (AttributeError, TypeError) as e:
            raise MetadataAPIError(f"Malformed paper response for {paper_ref}: {e}") from e

    def get_paper_by_doi(self, doi: str) -> Optional[RemotePaper]:
        """Get paper details, including references, by DOI."""
        doi = clean_doi(doi)
        if not is_valid_doi(doi):
            self.logger.warning(f"Invalid DOI format: {doi}")
            return None
        return self._get_paper(f"DOI:{doi}")

    def get_paper_by_arxiv(self, arxiv_id: str) -> Optional[RemotePaper]:
        """Get paper details, including references, by arXiv id."""
        return self._get_paper(f"ARXIV:{arxiv_id}")

    def get_paper_by_id(self, paper_id: str) -> Optional[RemotePaper]:
        """Get paper details, including references, by Semantic Scholar paper id."""
        return self._get_paper(paper_id)

    def _apply_reference_fallback(self, paper: RemotePaper, doi: Optional[str]) -> RemotePaper:
        """Fill a restricted reference list from Crossref when a DOI is known."""
        doi = doi or paper.any_doi
        if not paper.has_restricted_references or not doi:
            return paper

        try:
            references = self.crossref.get_references(doi)
        except MetadataAPIError as e:
            self.logger.debug(f"Crossref fallback failed for {doi}: {e}")
            return paper

        if references:
            self.logger.debug(f"Retrieved {len(references)} references via Crossref for {doi}")
            paper.references = references
        return paper

    def find_paper(self, entry: BibEntry) -> Optional[RemotePaper]:
        """Resolve a bibliography record, trying DOI, then arXiv id, then title.

        Returns None when no strategy finds the paper.

        Raises:
            MetadataAPIError: if a lookup fails; the caller decides whether to
                continue with the next record.
        """
        identifiers = extract_identifiers(entry)

        if identifiers.doi:
            paper = self.get_paper_by_doi(identifiers.doi)
            if paper:
                return self._apply_reference_fallback(paper, identifiers.doi)

        if identifiers.arxiv:
            paper = self.get_paper_by_arxiv(identifiers.arxiv)
            if paper:
                return self._apply_reference_fallback(paper, None)

            if self.arxiv_client is not None:
                doi = self.arxiv_client.lookup_doi(identifiers.arxiv)
                if doi and doi.lower() != (identifiers.doi or '').lower():
                    paper = self.get_paper_by_doi(doi)
                    if paper:
                        return self._apply_reference_fallback(paper, doi)

        if identifiers.title:
            results = self.search_paper(identifiers.title, limit=1)
            if results and results[0].get('paperId'):
                paper = self.get_paper_by_id(results[0]['paperId'])
                if paper:
                    return self._apply_reference_fallback(paper, None)

        return None
