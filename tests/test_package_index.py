"""Tests for Packages parsing and the structured upstream index."""

import pytest

from offline_repo.package_index import (
    PackageRecord,
    PackagesIndex,
    extract_target_arch_from_repo_filename,
    parse_dep_atom,
    parse_dep_field,
    parse_provides_field,
    parse_stanzas,
)

from conftest import packages_index


# ── parsing ──────────────────────────────────────────────────

class TestParseStanzas:
    def test_splits_on_blank_lines_and_joins_continuations(self):
        text = (
            "Package: foo\n"
            "Description: short\n"
            " long line one\n"
            "\n"
            "Package: bar\n"
        )
        stanzas = parse_stanzas(text.splitlines(True))
        assert [s["Package"] for s in stanzas] == ["foo", "bar"]
        assert stanzas[0]["Description"] == "short\nlong line one"

    def test_continuation_without_stanza_is_fatal(self):
        with pytest.raises(RuntimeError, match="continuation line"):
            parse_stanzas([" orphan\n"])

    def test_line_without_colon_is_fatal(self):
        with pytest.raises(RuntimeError, match="without colon"):
            parse_stanzas(["Package foo\n"])


class TestParseProvides:
    def test_plain_and_versioned(self):
        assert parse_provides_field("foo (= 1.2), bar") == {"foo": "1.2", "bar": None}

    def test_empty(self):
        assert parse_provides_field("") == {}

    def test_bad_token_is_dropped(self):
        assert parse_provides_field("Bad Token, ok") == {"ok": None}


class TestParseDepAtom:
    def test_full_atom(self):
        atom = parse_dep_atom("perl:any (>= 5.36) [amd64 arm64]")
        assert atom.name == "perl"
        assert atom.arch_qual == "any"
        assert (atom.op, atom.ver) == (">=", "5.36")
        assert atom.arch_list == ["amd64", "arm64"]

    def test_plain_name(self):
        atom = parse_dep_atom("zlib1g")
        assert atom.name == "zlib1g"
        assert atom.arch_qual is None and atom.op is None

    def test_garbage_returns_none(self):
        assert parse_dep_atom("(>= 1.0)") is None

    def test_arch_restriction(self):
        assert parse_dep_atom("foo [arm64]").applies_to("arm64")
        assert not parse_dep_atom("foo [arm64]").applies_to("amd64")
        assert not parse_dep_atom("foo [!amd64]").applies_to("amd64")

    def test_dep_field_groups_alternatives(self):
        groups = parse_dep_field("a | b, c (>= 1)")
        assert [[atom.name for atom in g] for g in groups] == [["a", "b"], ["c"]]


class TestTargetArch:
    def test_host_with_dashes(self):
        assert extract_target_arch_from_repo_filename(
            "deb-debian-org-bookworm-updates-main-binary-amd64.txt") == "amd64"

    def test_unrecognised_name(self):
        with pytest.raises(RuntimeError):
            extract_target_arch_from_repo_filename("packages.txt")


# ── index queries ────────────────────────────────────────────

class TestPackagesIndex:
    def test_concrete_and_virtual(self, index):
        assert index.has_package("curl")
        assert not index.has_package("x")
        assert index.reverse_provides("x") == ["a", "b"]
        assert index.reverse_provides("curl") == []

    def test_foreign_arch_records_are_ignored(self):
        index = PackagesIndex([PackageRecord("foo", "1.0", "arm64", "pool/foo.deb")], "amd64")
        assert not index.has_package("foo")

    def test_newest_version_wins(self):
        index = PackagesIndex([
            PackageRecord("foo", "1.0", "amd64", "pool/foo_1.0.deb"),
            PackageRecord("foo", "1:0.5", "amd64", "pool/foo_0.5.deb"),
            PackageRecord("foo", "1.2", "amd64", "pool/foo_1.2.deb"),
        ], "amd64")
        assert index.download_path("foo") == "pool/foo_0.5.deb"

    def test_download_path_for_unknown(self, index):
        assert index.download_path("nope") is None

    def test_task_packages(self, index):
        assert index.task_packages("standard") == ["ca-certificates", "curl"]
        assert index.task_packages("desktop") == []

    def test_rdepends_listing_for_curl(self, index):
        listing = index.rdepends_listing("curl")
        top_level = [line for line in listing.splitlines() if not line.startswith(" ")]
        assert top_level == ["curl", "libcurl4", "ca-certificates"]
        assert "  Depends: libcurl4 (= 7.88.1-10)" in listing

    def test_rdepends_lists_virtual_without_expanding(self, index):
        top_level = [l for l in index.rdepends_listing("mta-user").splitlines() if not l.startswith(" ")]
        assert top_level == ["mta-user", "mail-transport-agent"]

    def test_rdepends_follows_first_known_alternative(self):
        index = packages_index(
            "Package: app\nVersion: 1\nArchitecture: amd64\nFilename: app.deb\n"
            "Depends: missing-lib | real-lib, arm-only [arm64]\n\n"
            "Package: real-lib\nVersion: 1\nArchitecture: amd64\nFilename: real-lib.deb\n"
        )
        top_level = [l for l in index.rdepends_listing("app").splitlines() if not l.startswith(" ")]
        assert top_level == ["app", "real-lib"]

    def test_rdepends_survives_cycles(self):
        index = packages_index(
            "Package: p\nVersion: 1\nArchitecture: amd64\nFilename: p.deb\nPre-Depends: q\n\n"
            "Package: q\nVersion: 1\nArchitecture: amd64\nFilename: q.deb\nDepends: p\n"
        )
        listing = index.rdepends_listing("p")
        assert "  PreDepends: q" in listing
        assert [l for l in listing.splitlines() if not l.startswith(" ")] == ["p", "q"]

    def test_rdepends_unknown_raises(self, index):
        with pytest.raises(LookupError):
            index.rdepends_listing("does-not-exist")


class TestLoad:
    def test_load_from_directory(self, tmp_path):
        (tmp_path / "deb-debian-org-bookworm-main-binary-amd64.txt").write_text(
            "Package: foo\nVersion: 1\nArchitecture: amd64\nFilename: pool/foo.deb\n"
        )
        index = PackagesIndex.load(str(tmp_path))
        assert index.target_arch == "amd64"
        assert index.has_package("foo")
        assert index.best_record("foo").source_hint == "deb-debian-org-bookworm-main-binary-amd64"

    def test_mixed_arches_rejected(self, tmp_path):
        for arch in ("amd64", "arm64"):
            (tmp_path / f"h-s-main-binary-{arch}.txt").write_text(
                f"Package: foo\nVersion: 1\nArchitecture: {arch}\nFilename: foo.deb\n"
            )
        with pytest.raises(RuntimeError, match="Inconsistent target architectures"):
            PackagesIndex.load(str(tmp_path))

    def test_empty_directory_rejected(self, tmp_path):
        with pytest.raises(RuntimeError, match="No .txt repository files"):
            PackagesIndex.load(str(tmp_path))

    def test_missing_directory_rejected(self, tmp_path):
        with pytest.raises(RuntimeError, match="not found"):
            PackagesIndex.load(str(tmp_path / "nope"))

    def test_malformed_stanza_rejected(self, tmp_path):
        (tmp_path / "h-s-main-binary-amd64.txt").write_text("Package: foo\nVersion: 1\n")
        with pytest.raises(RuntimeError, match="Malformed stanza"):
            PackagesIndex.load(str(tmp_path))
