"""Tests for in-place BibTeX editing."""

import pytest

from citegap.bibtex_editor import BibTeXEditor


@pytest.fixture
def bib_file(tmp_path):
    path = tmp_path / "refs.bib"
    path.write_text(
        "% My references\n"
        "@article{nodoi, title={No DOI}}\n"
        "\n"
        "@article{trailing,\n"
        "  title = {Trailing Comma},\n"
        "}\n"
        "@article{hasdoi, title={Has DOI}, doi={10.1/old}}\n",
        encoding='utf-8'
    )
    return path


class TestBibTeXEditor:
    def test_add_doi(self, bib_file):
        editor = BibTeXEditor(str(bib_file))

        assert editor.add_doi("nodoi", "10.1/new") is True
        assert "@article{nodoi, title={No DOI},\n  doi = {10.1/new}\n}" in editor.content
        assert editor.has_doi("nodoi")
        assert editor.entries["nodoi"].doi == "10.1/new"

    def test_add_doi_after_trailing_comma(self, bib_file):
        editor = BibTeXEditor(str(bib_file))

        editor.add_doi("trailing", "10.1/t")

        assert "title = {Trailing Comma},\n  doi = {10.1/t}\n}" in editor.content
        assert ",," not in editor.content

    def test_existing_doi_untouched(self, bib_file):
        editor = BibTeXEditor(str(bib_file))
        original = editor.content

        assert editor.add_doi("hasdoi", "10.1/other") is False
        assert editor.content == original

    def test_unknown_entry_raises(self, bib_file):
        editor = BibTeXEditor(str(bib_file))

        with pytest.raises(KeyError):
            editor.add_doi("ghost", "10.1/g")

    def test_save_preserves_other_content(self, bib_file):
        editor = BibTeXEditor(str(bib_file))
        editor.add_doi("nodoi", "10.1/new")
        editor.save()

        saved = bib_file.read_text(encoding='utf-8')
        assert saved.startswith("% My references\n")
        assert "doi = {10.1/new}" in saved
        assert "@article{hasdoi, title={Has DOI}, doi={10.1/old}}" in saved
        assert BibTeXEditor(str(bib_file)).has_doi("nodoi")

    def test_has_entry(self, bib_file):
        editor = BibTeXEditor(str(bib_file))
        assert editor.has_entry("nodoi")
        assert not editor.has_entry("ghost")
