"""
Tests for site packaging — entry document selection and publishing.
"""

import shutil

import pytest

from sitedeploy.core.services.intake import accept_upload
from sitedeploy.core.services.packaging import (
    ENTRY_COPIED,
    ENTRY_GENERATED,
    ENTRY_UPLOADED,
    package_site,
    placeholder_document,
    select_entry_source,
)

from tests.uploads import make_upload


def _stage(tmp_path, *files):
    return accept_upload([make_upload(name, body) for name, body in files], tmp_path / "staging")


class TestSelectEntrySource:
    def test_index_uploaded(self):
        assert select_entry_source(["a.css", "index.html"]) == (ENTRY_UPLOADED, "index.html")

    def test_first_html_in_upload_order(self):
        assert select_entry_source(["b.html", "a.html"]) == (ENTRY_COPIED, "b.html")

    def test_no_html(self):
        assert select_entry_source(["style.css", "logo.png"]) == (ENTRY_GENERATED, None)


class TestPlaceholder:
    def test_names_project(self):
        doc = placeholder_document("Launch Page")
        assert "<title>Launch Page</title>" in doc
        assert "Welcome to Launch Page" in doc

    def test_default_title(self):
        assert "My Website" in placeholder_document(None)

    def test_escapes_name(self):
        doc = placeholder_document("<script>alert(1)</script>")
        assert "<script>" not in doc
        assert "&lt;script&gt;" in doc


class TestPackageSite:
    def test_uploaded_index_used_as_is(self, tmp_path):
        manifest = _stage(tmp_path, ("index.html", "<h1>mine</h1>"), ("style.css", "body{}"))
        result = package_site(manifest, tmp_path / "sites", "p1")
        site = tmp_path / "sites" / "p1"
        assert result.publish_dir == site
        assert result.entry_source == ENTRY_UPLOADED
        assert (site / "index.html").read_text() == "<h1>mine</h1>"
        assert result.files == ["index.html", "style.css"]

    def test_first_html_copied_to_index(self, tmp_path):
        manifest = _stage(tmp_path, ("page1.html", "<p>one</p>"), ("page2.html", "<p>two</p>"))
        result = package_site(manifest, tmp_path / "sites", "p1")
        site = tmp_path / "sites" / "p1"
        assert result.entry_source == ENTRY_COPIED
        assert result.entry_from == "page1.html"
        assert (site / "index.html").read_text() == "<p>one</p>"
        assert sorted(p.name for p in site.iterdir()) == ["index.html", "page1.html", "page2.html"]

    def test_placeholder_generated(self, tmp_path):
        manifest = _stage(tmp_path, ("style.css", "body{}"))
        result = package_site(manifest, tmp_path / "sites", "p1", "Docs & Stuff")
        assert result.entry_source == ENTRY_GENERATED
        assert "Docs &amp; Stuff" in (result.publish_dir / "index.html").read_text()
        assert result.files == ["index.html", "style.css"]

    def test_republish_replaces_previous(self, tmp_path):
        first = _stage(tmp_path, ("index.html", "v1"), ("old.css", "x"))
        package_site(first, tmp_path / "sites", "p1")
        second = _stage(tmp_path, ("index.html", "v2"))
        result = package_site(second, tmp_path / "sites", "p1")
        assert result.files == ["index.html"]
        assert (result.publish_dir / "index.html").read_text() == "v2"

    def test_staging_does_not_change(self, tmp_path):
        manifest = _stage(tmp_path, ("index.html", "x"))
        package_site(manifest, tmp_path / "sites", "p1")
        assert manifest.staging_dir.is_dir()
        assert manifest.names == ["index.html"]

    def test_missing_staging_raises_and_leaves_nothing(self, tmp_path):
        manifest = _stage(tmp_path, ("index.html", "x"))
        shutil.rmtree(manifest.staging_dir)
        with pytest.raises(OSError):
            package_site(manifest, tmp_path / "sites", "p1")
        assert list((tmp_path / "sites").iterdir()) == []

    def test_to_dict(self, tmp_path):
        manifest = _stage(tmp_path, ("a.html", "x"))
        data = package_site(manifest, tmp_path / "sites", "p1").to_dict()
        assert data["entry_source"] == ENTRY_COPIED
        assert data["entry_from"] == "a.html"
