from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import unquote

import pytest
import requests

from llmsheetbot.errors import ConfigError, StoreError
from llmsheetbot.store import CsvFileStore, GoogleSheetsStore, InMemoryStore, build_store
from llmsheetbot.store.base import TOKEN_ENV


def test_memory_store_reads_missing_cells_as_empty() -> None:
    store = InMemoryStore([["a", "b"], ["c"]])

    assert store.get_range("A1:C2") == [["a", "b", ""], ["c", "", ""]]
    assert store.batch_get(["B2", "Z99"]) == {"B2": "", "Z99": ""}


def test_memory_store_set_cell_grows_the_grid() -> None:
    store = InMemoryStore([["a"]])

    store.set_cell("C3", "x")

    assert store.get_values() == [["a"], [], ["", "", "x"]]


def test_memory_store_applies_structural_updates_in_order() -> None:
    store = InMemoryStore([["a", "b"], ["c", "d"]])

    store.batch_update(
        [
            {"type": "insert_rows", "index": 0, "count": 1},
            {"type": "set", "cell": "A1", "value": "head"},
            {"type": "insert_columns", "index": 1, "count": 1},
            {"type": "delete_rows", "index": 1, "count": 1},
        ]
    )

    assert store.get_values() == [["head"], ["c", "", "d"]]


def test_memory_store_rejects_unknown_updates_and_inverted_ranges() -> None:
    store = InMemoryStore([["a"]])

    with pytest.raises(StoreError):
        store.batch_update([{"type": "merge"}])
    with pytest.raises(StoreError):
        store.get_range("B2:A1")


def test_csv_store_round_trips_through_the_file(tmp_path: Path) -> None:
    path = tmp_path / "sheet.csv"
    path.write_text("a,b\nc,d\n", encoding="utf-8")
    store = CsvFileStore(path, logger=logging.getLogger("test"))

    store.set_cell("B3", "x, y")

    assert path.read_text(encoding="utf-8") == 'a,b\nc,d\n,"x, y"\n'
    assert store.batch_get(["A2", "B3"]) == {"A2": "c", "B3": "x, y"}
    assert not (tmp_path / "sheet.csv.lock").exists()


def test_csv_store_sees_changes_made_by_other_writers(tmp_path: Path) -> None:
    path = tmp_path / "sheet.csv"
    path.write_text("a,b\n", encoding="utf-8")
    store = CsvFileStore(path, logger=logging.getLogger("test"))

    path.write_text("changed,b\n", encoding="utf-8")

    assert store.get_values() == [["changed", "b"]]


def test_csv_store_reports_a_held_lock(tmp_path: Path) -> None:
    path = tmp_path / "sheet.csv"
    path.write_text("a\n", encoding="utf-8")
    (tmp_path / "sheet.csv.lock").write_text("other:1", encoding="utf-8")
    store = CsvFileStore(path, logger=logging.getLogger("test"), lock_timeout=0.1)

    with pytest.raises(StoreError, match="other:1"):
        store.set_cell("A1", "b")

    assert path.read_text(encoding="utf-8") == "a\n"


def test_csv_store_requires_an_existing_file(tmp_path: Path) -> None:
    with pytest.raises(StoreError):
        CsvFileStore(tmp_path / "missing.csv", logger=logging.getLogger("test"))


class FakeResponse:
    def __init__(self, payload=None, status: int = 200) -> None:
        self.payload = payload
        self.status = status
        self.content = b"{}" if payload is not None else b""

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, responder) -> None:
        self.headers = {}
        self.calls = []
        self.responder = responder

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responder(method, url, kwargs)


def make_sheets_store(responder) -> tuple[GoogleSheetsStore, FakeSession]:
    session = FakeSession(responder)
    store = GoogleSheetsStore(
        "sheet-id",
        sheet="Data",
        sheet_gid=7,
        access_token="token",
        logger=logging.getLogger("test"),
        session=session,
    )
    return store, session


def test_sheets_store_sends_bearer_token_and_reads_values() -> None:
    store, session = make_sheets_store(lambda method, url, kwargs: FakeResponse({"values": [["a", None], ["b"]]}))

    assert store.get_values() == [["a", ""], ["b"]]
    assert session.headers["Authorization"] == "Bearer token"
    method, url, _ = session.calls[0]
    assert method == "GET"
    assert unquote(url).endswith("/v4/spreadsheets/sheet-id/values/'Data'")


def test_sheets_store_batch_get_chunks_requests() -> None:
    def responder(method, url, kwargs):
        ranges = [value for key, value in kwargs["params"] if key == "ranges"]
        return FakeResponse({"valueRanges": [{"values": [[ref.split("!")[1]]]} for ref in ranges[:-1]]})

    store, session = make_sheets_store(responder)
    refs = [f"A{row}" for row in range(1, 151)]

    values = store.batch_get(refs)

    assert len(session.calls) == 2
    assert values["A1"] == "A1"
    # the last range of each chunk is missing from the fake payload
    assert values["A100"] == ""
    assert values["A150"] == ""


def test_sheets_store_batch_update_splits_structural_and_value_requests() -> None:
    store, session = make_sheets_store(lambda method, url, kwargs: FakeResponse({}))

    store.batch_update(
        [
            {"type": "insert_rows", "index": 9, "count": 2},
            {"type": "set", "cell": "C10", "value": "text"},
        ]
    )

    (first_method, first_url, first), (_, second_url, second) = session.calls
    assert first_method == "POST" and first_url.endswith("sheet-id:batchUpdate")
    assert first["json"]["requests"] == [
        {
            "insertDimension": {
                "range": {"sheetId": 7, "dimension": "ROWS", "startIndex": 9, "endIndex": 11},
                "inheritFromBefore": True,
            }
        }
    ]
    assert second_url.endswith("/values:batchUpdate")
    assert second["json"]["data"] == [{"range": "'Data'!C10", "values": [["text"]]}]


def test_sheets_store_set_cell_puts_raw_value() -> None:
    store, session = make_sheets_store(lambda method, url, kwargs: FakeResponse(None))

    store.set_cell("E9", "answer")

    method, url, kwargs = session.calls[0]
    assert method == "PUT"
    assert unquote(url).endswith("values/'Data'!E9")
    assert kwargs["params"] == {"valueInputOption": "RAW"}
    assert kwargs["json"]["values"] == [["answer"]]


def test_sheets_store_wraps_transport_errors() -> None:
    def responder(method, url, kwargs):
        raise requests.ConnectionError("offline")

    store, _ = make_sheets_store(responder)

    with pytest.raises(StoreError, match="offline"):
        store.get_range("A1:B2")


def test_sheets_store_wraps_http_errors() -> None:
    store, _ = make_sheets_store(lambda method, url, kwargs: FakeResponse({}, status=403))

    with pytest.raises(StoreError, match="403"):
        store.set_cell("A1", "x")


def test_build_store_dispatches_on_backend(tmp_path: Path, monkeypatch) -> None:
    logger = logging.getLogger("test")
    path = tmp_path / "sheet.csv"
    path.write_text("a\n", encoding="utf-8")

    assert isinstance(build_store({"backend": "memory", "rows": [["a"]]}, logger=logger), InMemoryStore)
    assert isinstance(build_store({"backend": "csv", "csv_path": str(path)}, logger=logger), CsvFileStore)

    monkeypatch.setenv(TOKEN_ENV, "secret")
    sheets = build_store({"backend": "sheets", "spreadsheet_id": "abc"}, logger=logger)
    assert isinstance(sheets, GoogleSheetsStore)
    assert sheets.sheet == "Sheet1"


def test_build_store_validates_backend_settings(monkeypatch) -> None:
    logger = logging.getLogger("test")
    monkeypatch.delenv(TOKEN_ENV, raising=False)

    with pytest.raises(ConfigError):
        build_store({"backend": "excel"}, logger=logger)
    with pytest.raises(ConfigError):
        build_store({"backend": "csv", "csv_path": ""}, logger=logger)
    with pytest.raises(ConfigError):
        build_store({"backend": "sheets", "spreadsheet_id": "abc"}, logger=logger)
