"""Google Sheets (v4 REST API) store."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

import requests

from ..errors import StoreError
from .base import UpdateRequest

BATCH_GET_LIMIT = 100

_DIMENSIONS = {
    "insert_rows": ("insertDimension", "ROWS"),
    "delete_rows": ("deleteDimension", "ROWS"),
    "insert_columns": ("insertDimension", "COLUMNS"),
    "delete_columns": ("deleteDimension", "COLUMNS"),
}


class GoogleSheetsStore:
    def __init__(
        self,
        spreadsheet_id: str,
        *,
        sheet: str,
        access_token: str,
        logger,
        sheet_gid: int = 0,
        base_url: str = "https://sheets.googleapis.com",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.sheet = sheet
        self.sheet_gid = sheet_gid
        self.timeout = timeout
        self.logger = logger
        self._root = f"{base_url.rstrip('/')}/v4/spreadsheets/{spreadsheet_id}"
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {access_token}"})

    # ------------------------------------------------------------------
    def get_values(self) -> List[List[str]]:
        payload = self._request("GET", f"/values/{self._quoted(None)}", params={"valueRenderOption": "FORMATTED_VALUE"})
        return _normalise_rows(payload.get("values"))

    def get_range(self, ref: str) -> List[List[str]]:
        payload = self._request("GET", f"/values/{self._quoted(ref)}", params={"valueRenderOption": "FORMATTED_VALUE"})
        return _normalise_rows(payload.get("values"))

    def batch_get(self, refs: Sequence[str]) -> Dict[str, str]:
        result: Dict[str, str] = {}
        refs = list(refs)
        for offset in range(0, len(refs), BATCH_GET_LIMIT):
            chunk = refs[offset:offset + BATCH_GET_LIMIT]
            params: List[tuple] = [("ranges", self._qualified(ref)) for ref in chunk]
            params.append(("valueRenderOption", "FORMATTED_VALUE"))
            payload = self._request("GET", "/values:batchGet", params=params)
            value_ranges = payload.get("valueRanges") or []
            for ref, entry in zip(chunk, value_ranges):
                rows = _normalise_rows(entry.get("values") if isinstance(entry, Mapping) else None)
                result[ref] = rows[0][0] if rows and rows[0] else ""
            for ref in chunk[len(value_ranges):]:
                result[ref] = ""
        return result

    def set_cell(self, ref: str, value: str) -> None:
        self._request(
            "PUT",
            f"/values/{self._quoted(ref)}",
            params={"valueInputOption": "RAW"},
            json={"range": self._qualified(ref), "values": [[value]]},
        )

    def batch_update(self, requests_: Sequence[UpdateRequest]) -> None:
        value_data: List[Dict[str, Any]] = []
        structural: List[Dict[str, Any]] = []
        for request in requests_:
            kind = request.get("type")
            if kind == "set":
                value_data.append({"range": self._qualified(str(request["cell"])), "values": [[request.get("value", "")]]})
            elif kind in _DIMENSIONS:
                structural.append(self._dimension_request(kind, request))
            else:
                raise StoreError(f"Unsupported update request: {kind!r}")
        if structural:
            self._request("POST", ":batchUpdate", json={"requests": structural})
        if value_data:
            self._request("POST", "/values:batchUpdate", json={"valueInputOption": "RAW", "data": value_data})

    # ------------------------------------------------------------------
    def _dimension_request(self, kind: str, request: UpdateRequest) -> Dict[str, Any]:
        operation, dimension = _DIMENSIONS[kind]
        start = int(request.get("index", 0))
        count = int(request.get("count", 1))
        body: Dict[str, Any] = {
            "range": {
                "sheetId": self.sheet_gid,
                "dimension": dimension,
                "startIndex": start,
                "endIndex": start + count,
            }
        }
        if operation == "insertDimension":
            body["inheritFromBefore"] = start > 0
        return {operation: body}

    def _qualified(self, ref: Optional[str]) -> str:
        sheet = "'" + self.sheet.replace("'", "''") + "'"
        return f"{sheet}!{ref}" if ref else sheet

    def _quoted(self, ref: Optional[str]) -> str:
        return quote(self._qualified(ref), safe="")

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self._root}{path}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as exc:
            self.logger.error("Sheets API %s %s failed: %s", method, path, exc)
            raise StoreError(f"Sheets API {method} {path} failed: {exc}") from exc
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise StoreError(f"Sheets API returned non-JSON payload for {path}") from exc
        return payload if isinstance(payload, dict) else {}


def _normalise_rows(values: object) -> List[List[str]]:
    if not isinstance(values, list):
        return []
    rows: List[List[str]] = []
    for row in values:
        if isinstance(row, list):
            rows.append(["" if cell is None else str(cell) for cell in row])
        else:
            rows.append([])
    return rows


__all__ = ["GoogleSheetsStore", "BATCH_GET_LIMIT"]
