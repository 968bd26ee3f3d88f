"""Main module for the citegap command-line application."""

import argparse
import logging
import os
import re
import sys
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

from .bibtex_editor import BibTeXEditor
from .bibtex_parser import BibTeXParser
from .cache import APICache
from .citation_analyzer import CitationAnalyzer
from .config import Config, resolve_api_key
from .gap_analyzer import GapAnalyzer, render_gap
from .metadata_client import ArxivClient, CrossrefClient, MetadataAPIError, SemanticScholarClient


def setup_logging(config: Dict[str, Any] = None, verbose: bool = False) -> None:
    """Configure logging based on config file and command-line options.

    Args:
        config: Logging configuration from config.yml
        verbose: If True, set level to DEBUG regardless of config
    """
    config = config or {}

    if verbose:
        level = logging.DEBUG
    else:
        level_name = config.get('level', 'WARNING').upper()
        level = getattr(logging, level_name, logging.WARNING)

    log_format = config.get(
        'format',
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    handlers = []

    # Progress narration goes to stdout, so log records go to stderr
    if config.get('console', True):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(log_format))
        handlers.append(console_handler)

    log_file = config.get('file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(log_format))
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=handlers,
        force=True
    )

    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)
    logging.getLogger('arxiv').setLevel(logging.WARNING)


def load_config(config_path: str = "config.yml") -> Dict[str, Any]:
    """Load configuration from YAML file with environment variable substitution.

    Supports ${VAR} syntax for environment variable substitution in config values.

    Returns:
        Configuration dictionary, or empty dict if file not found
    """
    config_file = Path(config_path)
    if not config_file.exists():
        return {}

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        print(f"Warning: Failed to load config file {config_path}: {e}", file=sys.stderr)
        return {}

    return _substitute_env_vars(config)


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute ${VAR} patterns with environment variables."""
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace(match):
            return os.environ.get(match.group(1), match.group(0))
        return re.sub(r'\$\{([^}]+)\}', replace, obj)
    return obj


def build_client(config: Dict[str, Any], api_key: Optional[str] = None,
                 cache: Optional[APICache] = None) -> SemanticScholarClient:
    """Create the single metadata client for this run from config.yml settings."""
    api_config = config.get('api', {})
    ss_cfg = api_config.get('semantic_scholar', {})
    crossref_cfg = api_config.get('crossref', {})
    arxiv_cfg = api_config.get('arxiv', {})

    cache = cache or build_cache(config)

    crossref = CrossrefClient(
        base_url=crossref_cfg.get('base_url', 'https://api.crossref.org/works'),
        user_agent=crossref_cfg.get('user_agent', 'citegap/1.0 (mailto:contact@example.com)'),
        cache=cache,
        timeout=crossref_cfg.get('timeout', 10)
    )

    arxiv_client = None
    if arxiv_cfg.get('enabled', True):
        arxiv_client = ArxivClient(rate_limit=max(3.0, arxiv_cfg.get('rate_limit', 3.0)))

    configured_key = ss_cfg.get('api_key')
    # An unset ${VAR} survives substitution verbatim
    if isinstance(configured_key, str) and configured_key.startswith('${'):
        configured_key = None

    return SemanticScholarClient(
        api_key=resolve_api_key(api_key or configured_key),
        cache=cache,
        base_url=ss_cfg.get('base_url', 'https://api.semanticscholar.org'),
        rate_limit=max(1.1, ss_cfg.get('rate_limit', 1.1)),
        max_retries=ss_cfg.get('max_retries', 4),
        timeout=ss_cfg.get('timeout', 15),
        crossref=crossref,
        arxiv_client=arxiv_client
    )


def build_cache(config: Dict[str, Any]) -> APICache:
    dirs_config = config.get('directories', {})
    return APICache(
        cache_dir=dirs_config.get('cache', '.citegap-cache'),
        cache_duration_days=config.get('cache', {}).get('duration_days', 7)
    )


class CiteGapApp:
    """Ties the bibliography, the document and the metadata client together."""

    def __init__(self, bib_file: str, tex_file: Optional[str], client: SemanticScholarClient):
        self.bib_file = bib_file
        self.tex_file = tex_file
        self.client = client
        self.logger = logging.getLogger(__name__)

    def citation_analyzer(self) -> CitationAnalyzer:
        return CitationAnalyzer(self.bib_file, self.tex_file)

    def find_gaps(self, min_citations: int = 2, limit_papers: Optional[int] = None,
                  quiet: bool = False, include_unused: bool = False,
                  output_file: Optional[str] = None) -> int:
        analyzer = GapAnalyzer(self.citation_analyzer(), self.client)
        result = analyzer.find_gaps(
            min_citations=min_citations,
            limit_papers=limit_papers,
            quiet=quiet,
            include_unused=include_unused
        )

        summary = result.summary
        print(f"\nAnalyzed references from {result.total_analyzed} papers")
        print(f"Found {summary['total_gaps']} potential gaps "
              f"({summary['high_priority']} high priority, {summary['medium_priority']} medium priority)\n")

        for gap in result.gaps:
            ref = gap.reference
            print(f"[{gap.count}x] {ref.title} ({ref.year or 'n.d.'})")
            print(f"      cited by: {', '.join(gap.cited_by)}")

        if output_file and result.gaps:
            entries = '\n\n'.join(render_gap(gap) for gap in result.gaps)
            Path(output_file).write_text(entries + '\n', encoding='utf-8')
            print(f"\nBibTeX entries saved to: {output_file}")

        return len(result.gaps)

    def add_missing_dois(self, dry_run: bool = False) -> int:
        """Look up entries without a DOI and insert the DOI the provider reports."""
        editor = BibTeXEditor(self.bib_file)
        added = 0

        for key, entry in editor.entries.items():
            if entry.doi:
                continue
            print(f"Looking up: {key}...", end='', flush=True)
            try:
                paper = self.client.find_paper(entry)
            except MetadataAPIError as e:
                print(f" error: {e}")
                continue

            doi = paper.any_doi if paper else None
            if not doi:
                print(" no DOI found")
                continue

            print(f" {doi}")
            if not dry_run and editor.add_doi(key, doi):
                added += 1

        if added:
            editor.save()
        return added


def _print_stats(analyzer: CitationAnalyzer) -> None:
    stats = analyzer.get_stats()
    print(f"Entries in bibliography: {stats['total_in_bib']}")
    print(f"Citations used:          {stats['total_used']}")
    print(f"Unused entries:          {stats['total_unused']}")
    print(f"Missing from .bib:       {stats['missing_from_bib']}")


def _print_unused(analyzer: CitationAnalyzer, query: Optional[str]) -> None:
    entries = analyzer.search_unused(query) if query else analyzer.get_unused_citations()
    for entry in entries:
        print(f"{entry.key}: {entry.title or ''} ({entry.year or 'n.d.'})")
    print(f"\n{len(entries)} unused entries")


def _handle_cache(args, config: Dict[str, Any]) -> None:
    cache = build_cache(config)
    if args.cache_command == 'cleanup':
        print(f"Removed {cache.cleanup()} expired entries")
    elif args.cache_command == 'clear':
        cache.clear()
        print("Cache cleared")
    else:
        stats = cache.get_stats()
        print(f"Cache directory: {stats['cache_dir']}")
        print(f"Entries: {stats['durable_entries']}")
        print(f"Size: {stats['total_size_bytes'] // 1024} KB")


def _handle_config(args) -> None:
    user_config = Config()
    if args.config_command == 'set-key':
        user_config.set_semantic_scholar_api_key(args.api_key)
        print(f"API key saved to {user_config.config_file}")
    elif args.config_command == 'remove-key':
        user_config.remove_semantic_scholar_api_key()
        print("API key removed")
    else:
        key = user_config.get_semantic_scholar_api_key()
        print(f"Config file: {user_config.config_file}")
        print(f"Semantic Scholar API key: {key[:8] + '...' if key else '(not set)'}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='citegap',
        description="Find papers your sources cite often but your bibliography lacks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s gaps refs.bib paper.tex                    # Rank missing references
  %(prog)s gaps refs.bib paper.tex --min-citations 3  # Only references cited by 3+ sources
  %(prog)s gaps refs.bib paper.tex -o suggestions.bib # Save BibTeX for the gaps
  %(prog)s unused refs.bib paper.tex                  # Entries the paper never cites
  %(prog)s add-dois refs.bib                          # Fill in missing DOIs
  %(prog)s cache cleanup                              # Drop expired cache entries
        """
    )
    parser.add_argument('--config', default='config.yml', help='Path to configuration file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose (debug) logging')
    parser.add_argument('--api-key', help='Semantic Scholar API key')

    subparsers = parser.add_subparsers(dest='command', required=True)

    gaps = subparsers.add_parser('gaps', help='Find citation gaps')
    gaps.add_argument('bib_file', help='Path to the .bib file')
    gaps.add_argument('tex_file', help='Path to the .tex file')
    gaps.add_argument('--min-citations', type=int, default=2,
                      help='Minimum number of citing sources (default: 2)')
    gaps.add_argument('--limit', type=int, default=None,
                      help='Only look up the first N papers')
    gaps.add_argument('--include-unused', action='store_true',
                      help='Analyze every bibliography entry, not only cited ones')
    gaps.add_argument('-q', '--quiet', action='store_true', help='Suppress progress output')
    gaps.add_argument('-o', '--output', help='Write BibTeX entries for the gaps to this file')

    unused = subparsers.add_parser('unused', help='List bibliography entries the document does not cite')
    unused.add_argument('bib_file')
    unused.add_argument('tex_file')
    unused.add_argument('--search', help='Filter by key, title or author')

    stats = subparsers.add_parser('stats', help='Show citation statistics')
    stats.add_argument('bib_file')
    stats.add_argument('tex_file')

    add_dois = subparsers.add_parser('add-dois', help='Insert missing DOIs into the .bib file')
    add_dois.add_argument('bib_file')
    add_dois.add_argument('--dry-run', action='store_true', help='Show DOIs without editing the file')

    cache = subparsers.add_parser('cache', help='Manage the API response cache')
    cache.add_argument('cache_command', nargs='?', choices=['stats', 'cleanup', 'clear'], default='stats')

    config = subparsers.add_parser('config', help='Manage user configuration')
    config_sub = config.add_subparsers(dest='config_command')
    set_key = config_sub.add_parser('set-key', help='Store the Semantic Scholar API key')
    set_key.add_argument('api_key')
    config_sub.add_parser('remove-key', help='Remove the stored API key')
    config_sub.add_parser('show', help='Show the current configuration')

    return parser


def main(argv=None):
    """Main entry point for the command-line interface."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    setup_logging(config.get('logging', {}), verbose=args.verbose)

    try:
        if args.command == 'cache':
            _handle_cache(args, config)
        elif args.command == 'config':
            _handle_config(args)
        elif args.command in ('unused', 'stats'):
            analyzer = CitationAnalyzer(args.bib_file, args.tex_file)
            if args.command == 'stats':
                _print_stats(analyzer)
            else:
                _print_unused(analyzer, args.search)
        else:
            client = build_client(config, api_key=args.api_key)
            app = CiteGapApp(args.bib_file, getattr(args, 'tex_file', None), client)
            if args.command == 'gaps':
                app.find_gaps(
                    min_citations=args.min_citations,
                    limit_papers=args.limit,
                    quiet=args.quiet,
                    include_unused=args.include_unused,
                    output_file=args.output
                )
            else:
                added = app.add_missing_dois(dry_run=args.dry_run)
                print(f"\nAdded {added} DOIs")

    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(1)


if __name__ == '__main__':
    main()
