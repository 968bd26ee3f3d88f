"""Tests for shared utility functions and identifier extraction."""

import pytest
from citegap.bibtex_parser import BibEntry
from citegap.identifiers import extract_identifiers, first_match, DOI_EXTRACTORS
from citegap.utils import (
    normalize_title,
    clean_latex_formatting,
    clean_doi,
    is_valid_doi,
    extract_last_name,
)


class TestNormalizeTitle:
    """Tests for normalize_title function."""

    def test_lowercases_and_strips_punctuation(self):
        assert normalize_title("Deep Learning: A Survey!") == "deep learning a survey"

    def test_collapses_whitespace(self):
        assert normalize_title("  Machine    Learning \n with  Python ") == "machine learning with python"

    def test_punctuation_becomes_space(self):
        """Hyphenated words split rather than merge."""
        assert normalize_title("Pre-trained Models") == "pre trained models"

    def test_equivalent_titles_match(self):
        assert normalize_title("Attention Is All You Need") == normalize_title("attention is all you need.")

    def test_handles_empty(self):
        assert normalize_title("") == ""
        assert normalize_title(None) == ""


class TestCleanLatexFormatting:
    """Tests for clean_latex_formatting function."""

    def test_removes_commands(self):
        result = clean_latex_formatting("A \\textbf{Bold} Approach to \\emph{Machine} Learning")
        assert result == "A Bold Approach to Machine Learning"

    def test_removes_protective_braces(self):
        assert clean_latex_formatting("{Deep} Learning for {{NLP}}") == "Deep Learning for NLP"

    def test_keeps_accented_letter(self):
        assert clean_latex_formatting('Schr\\"{o}dinger') == "Schrodinger"

    def test_handles_empty(self):
        assert clean_latex_formatting(None) == ""


class TestDoiHelpers:
    """Tests for DOI cleanup and validation."""

    def test_cleans_doi_url(self):
        assert clean_doi("https://doi.org/10.1234/test") == "10.1234/test"
        assert clean_doi("http://dx.doi.org/10.1234/test") == "10.1234/test"

    def test_cleans_doi_prefix(self):
        assert clean_doi("doi:10.1234/test") == "10.1234/test"

    def test_handles_empty_doi(self):
        assert clean_doi("") == ""
        assert clean_doi(None) == ""

    def test_validates_doi(self):
        assert is_valid_doi("10.1234/test")
        assert not is_valid_doi("1234/test")
        assert not is_valid_doi("10.1")
        assert not is_valid_doi(None)


class TestExtractLastName:
    def test_last_token_lowercased(self):
        assert extract_last_name("Jane Q. Doe") == "doe"

    def test_single_name(self):
        assert extract_last_name("Plato") == "plato"

    def test_empty(self):
        assert extract_last_name("") == ""
        assert extract_last_name(None) == ""


class TestExtractIdentifiers:
    """Tests for extract_identifiers."""

    def test_full_record(self):
        """Should derive every identifier from a complete record."""
        entry = BibEntry(
            entry_type="article", key="smith2020", title="Learning: Things",
            year="2020", doi="10.1000/ABC", isbn="978-3-16-148410-0",
            eprint="2101.00001"
        )

        ids = extract_identifiers(entry)

        assert ids.doi == "10.1000/ABC"
        assert ids.isbn == "9783161484100"
        assert ids.arxiv == "2101.00001"
        assert ids.normalized_title == "learning things"
        assert ids.year == "2020"
        assert ids.title_year_key == "learning things|2020"

    def test_doi_from_url(self):
        entry = BibEntry(entry_type="article", key="k", url="https://doi.org/10.1145/3292500.3330701")
        assert extract_identifiers(entry).doi == "10.1145/3292500.3330701"

    def test_doi_field_preferred_over_url(self):
        entry = BibEntry(entry_type="article", key="k", doi="10.1/field",
                         url="https://doi.org/10.1/url")
        assert extract_identifiers(entry).doi == "10.1/field"

    def test_arxiv_from_url(self):
        entry = BibEntry(entry_type="misc", key="k", url="https://arxiv.org/abs/1706.03762v5")
        assert extract_identifiers(entry).arxiv == "1706.03762"

    def test_arxiv_from_pdf_url(self):
        entry = BibEntry(entry_type="misc", key="k", url="https://arxiv.org/pdf/2005.14165")
        assert extract_identifiers(entry).arxiv == "2005.14165"

    def test_old_style_arxiv_eprint(self):
        entry = BibEntry(entry_type="misc", key="k", eprint="hep-th/9901001")
        assert extract_identifiers(entry).arxiv == "hep-th/9901001"

    def test_missing_fields_yield_none(self):
        """Incomplete records never raise."""
        ids = extract_identifiers(BibEntry(entry_type="misc", key="empty"))

        assert ids.doi is None
        assert ids.arxiv is None
        assert ids.isbn is None
        assert ids.normalized_title == ""
        assert ids.year is None
        assert ids.title_year_key is None

    def test_deterministic(self):
        entry = BibEntry(entry_type="article", key="k", title="Same Title", year="2001")
        assert extract_identifiers(entry) == extract_identifiers(entry)

    def test_first_match_stops_at_first_value(self):
        entry = BibEntry(entry_type="article", key="k", url="https://doi.org/10.9/u")
        assert first_match(entry, DOI_EXTRACTORS) == "10.9/u"
        assert first_match(entry, ()) is None
