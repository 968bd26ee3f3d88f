"""Tests for LaTeX citation extraction and bibliography cross-referencing."""

import pytest

from citegap.citation_analyzer import CitationAnalyzer, MISSING_ENTRY_TITLE, is_missing_entry
from citegap.tex_parser import TexParser, extract_citations


class TestExtractCitations:
    def test_basic_commands(self):
        content = r"As shown \cite{smith2020} and \citep{doe2019,roe2018}, see \citet{poe2017}."
        assert extract_citations(content) == ["smith2020", "doe2019", "roe2018", "poe2017"]

    def test_first_appearance_order_without_duplicates(self):
        content = r"\cite{b} \cite{a, b} \cite{c} \cite{a}"
        assert extract_citations(content) == ["b", "a", "c"]

    def test_optional_notes_and_stars(self):
        content = r"\citep[see][p.~3]{note1} \citet*{star1} \parencite[ch.~2]{bl1} \textcite{bl2} \autocite{bl3}"
        assert extract_citations(content) == ["note1", "star1", "bl1", "bl2", "bl3"]

    def test_ignores_commented_citations(self):
        content = "\\cite{kept} % \\cite{dropped}\n% \\cite{alsodropped}\n50\\% of \\cite{after}"
        assert extract_citations(content) == ["kept", "after"]

    def test_nocite_wildcard_excluded(self):
        assert extract_citations(r"\nocite{*} \nocite{explicit}") == ["explicit"]

    def test_no_citations(self):
        assert extract_citations("Plain text with no references.") == []


class TestTexParser:
    def test_parse_file(self, tmp_path):
        tex_file = tmp_path / "paper.tex"
        tex_file.write_text(r"\begin{document}\cite{a}\cite{b}\end{document}", encoding='utf-8')
        parser = TexParser(str(tex_file))

        assert parser.get_used_citations() == ["a", "b"]
        assert parser.is_citation_used("a")
        assert not parser.is_citation_used("z")

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            TexParser(str(tmp_path / "missing.tex")).parse()


class TestCitationAnalyzer:
    """Tests for the used/unused/missing views over a .bib and .tex pair."""

    @pytest.fixture
    def analyzer(self, tmp_path):
        bib_file = tmp_path / "refs.bib"
        bib_file.write_text(
            "@article{used1, title = {Used One}, author = {Ann Smith}, year = {2020}}\n"
            "@article{unused1, title = {Graph Methods}, author = {Bob Jones}, year = {2019}}\n"
            "@article{used2, title = {Used Two}, year = {2018}}\n"
            "@book{unused2, title = {A Book on Trees}, author = {Cara Graph}}\n",
            encoding='utf-8'
        )
        tex_file = tmp_path / "paper.tex"
        tex_file.write_text(r"\cite{used2} \cite{used1, ghost}", encoding='utf-8')
        return CitationAnalyzer(str(bib_file), str(tex_file))

    def test_used_citations_in_document_order(self, analyzer):
        assert analyzer.get_used_citations() == ["used2", "used1", "ghost"]

    def test_used_citations_list_with_missing_placeholder(self, analyzer):
        used = analyzer.get_used_citations_list()

        assert [e.key for e in used] == ["used2", "used1", "ghost"]
        assert used[1].title == "Used One"
        assert is_missing_entry(used[2])
        assert used[2].title == MISSING_ENTRY_TITLE
        assert not is_missing_entry(used[0])

    def test_all_entries_in_file_order(self, analyzer):
        assert [e.key for e in analyzer.get_all_bib_entries()] == ["used1", "unused1", "used2", "unused2"]

    def test_unused_citations(self, analyzer):
        assert [e.key for e in analyzer.get_unused_citations()] == ["unused1", "unused2"]

    def test_search_unused_matches_key_title_or_author(self, analyzer):
        assert [e.key for e in analyzer.search_unused("GRAPH")] == ["unused1", "unused2"]
        assert [e.key for e in analyzer.search_unused("jones")] == ["unused1"]
        assert [e.key for e in analyzer.search_unused("unused2")] == ["unused2"]
        assert analyzer.search_unused("nothing") == []

    def test_stats(self, analyzer):
        assert analyzer.get_stats() == {
            'total_in_bib': 4,
            'total_used': 3,
            'total_unused': 2,
            'missing_from_bib': 1
        }
