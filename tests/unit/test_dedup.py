"""Tests for the dedup index rebuilt from the output file."""

from privy_export.lib.dedup import DedupIndex, extract_id
from privy_export.lib.sink import CSV_HEADER


def test_extract_id_strips_quotes():
    assert extract_id('"did:privy:1","100","false","","","0"') == "did:privy:1"


def test_extract_id_blank_line():
    assert extract_id("   \n") is None
    assert extract_id('"",x') is None


class TestDedupIndex:
    def test_add_and_contains(self):
        index = DedupIndex()
        assert not index.contains("u1")
        index.add("u1")
        assert index.contains("u1")
        assert "u1" in index
        assert len(index) == 1

    def test_initial_ids(self):
        index = DedupIndex(["a", "b", "a"])
        assert sorted(index) == ["a", "b"]

    def test_from_missing_file_is_empty(self, tmp_path):
        index = DedupIndex.from_sink(tmp_path / "missing.csv")
        assert len(index) == 0

    def test_from_sink_skips_header(self, tmp_path):
        path = tmp_path / "users.csv"
        path.write_text(CSV_HEADER + '\n"u1","1","false","","","0"\n"u2","2","true","","","0"\n')

        index = DedupIndex.from_sink(path)

        assert sorted(index) == ["u1", "u2"]
        assert "id" not in index

    def test_from_sink_tolerates_blank_and_torn_lines(self, tmp_path):
        path = tmp_path / "users.csv"
        path.write_text(CSV_HEADER + '\n"u1","1","false","","","0"\n\n\n"u2","2","tr')

        index = DedupIndex.from_sink(path)

        assert sorted(index) == ["u1", "u2"]

    def test_header_only_file_is_empty(self, tmp_path):
        path = tmp_path / "users.csv"
        path.write_text(CSV_HEADER + "\n")
        assert len(DedupIndex.from_sink(path)) == 0
