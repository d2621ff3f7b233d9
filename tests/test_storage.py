"""Tests for workbook storage backends and survey tokens."""

import threading

import pytest

from cbc.errors import InvalidTokenError
from cbc.storage import CsvStore, InMemoryStore, Workbooks
from cbc.tokens import TokenRegistry


@pytest.fixture(params=["memory", "csv"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStore()
    return CsvStore(tmp_path / "book")


class TestStore:
    """Tests shared by every ``Store`` backend."""

    def test_missing_table_reads_empty(self, store):
        assert store.read_table("Nope") == []
        assert store.has_table("Nope") is False

    def test_ensure_table(self, store):
        store.ensure_table("Design")
        assert store.has_table("Design")
        assert store.read_table("Design") == []

    def test_append_then_write(self, store):
        store.append_rows("Responses", [["a", 1, None]])
        store.append_rows("Responses", [["b", 2, 3.5]])
        assert store.read_table("Responses") == [["a", "1", ""], ["b", "2", "3.5"]]

        store.write_table("Responses", [["header"]])
        assert store.read_table("Responses") == [["header"]]

    def test_cells_with_commas_and_quotes(self, store):
        store.write_table("Attributes", [['Plan "Pro"', "1,000 users"]])
        assert store.read_table("Attributes") == [['Plan "Pro"', "1,000 users"]]


class TestWorkbooks:
    """Tests for workbook resolution."""

    def test_in_memory_workbooks_are_reused(self):
        books = Workbooks()
        books.open("a").write_table("T", [["x"]])
        assert books.open("a").read_table("T") == [["x"]]
        assert books.open("b").read_table("T") == []

    def test_csv_workbooks_live_under_root(self, tmp_path):
        books = Workbooks(tmp_path)
        books.open("my sheet/1").write_table("Config", [["Setting", "Value"]])
        assert (tmp_path / "my_sheet_1" / "Config.csv").exists()


class TestTokenRegistry:
    """Tests for opaque project keys and survey tokens."""

    def test_round_trip(self):
        tokens = TokenRegistry()
        token = tokens.encrypt({"sheetId": "s", "surveyId": "x"})
        assert "sheetId" not in token
        assert tokens.decrypt(token) == {"sheetId": "s", "surveyId": "x"}

    def test_tokens_are_unique(self):
        tokens = TokenRegistry()
        assert tokens.encrypt({"sheetId": "s"}) != tokens.encrypt({"sheetId": "s"})

    def test_unknown_and_missing_tokens(self):
        tokens = TokenRegistry()
        with pytest.raises(InvalidTokenError, match="Invalid or expired"):
            tokens.decrypt("nope")
        with pytest.raises(InvalidTokenError, match="Missing"):
            tokens.decrypt("")

    def test_persisted_across_instances(self, tmp_path):
        path = tmp_path / "tokens.json"
        token = TokenRegistry(path).encrypt({"sheetId": "s"})
        assert TokenRegistry(path).decrypt(token) == {"sheetId": "s"}

    def test_concurrent_encrypt(self, tmp_path):
        """Test that request threads can mint tokens at once without losing any."""
        path = tmp_path / "tokens.json"
        tokens = TokenRegistry(path)
        minted, errors = [], []

        def mint(worker):
            for i in range(50):
                try:
                    minted.append(tokens.encrypt({"sheetId": f"s{worker}", "surveyId": str(i)}))
                except Exception as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=mint, args=(w,)) for w in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(set(minted)) == 8 * 50
        reloaded = TokenRegistry(path)
        assert all(reloaded.decrypt(token)["sheetId"].startswith("s") for token in minted)
        assert not path.with_suffix(".json.tmp").exists()
