"""
Client for the spreadsheet web-app that stores building unit lists.

Every call is one POST to the web-app URL with a JSON body
{"action": <name>, ...payload}. The body is sent as text/plain, which the
web-app accepts without a CORS preflight. Replies carry
{"result": "success" | "error", ...}.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from floor_types import BuildingRef, PersistenceFailure, UnitRecord
from unit_store import SaveResult

logger = logging.getLogger(__name__)

HEADERS = {"Content-Type": "text/plain;charset=utf-8"}


class SheetAPI:
    """Thin transport: one action in, one decoded reply out."""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not url:
            raise ValueError("Spreadsheet web-app URL is not configured")
        self.url = url
        # The web-app answers from a redirected googleusercontent URL
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SheetAPI:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def action(self, action: str, **payload: Any) -> dict:
        """
        Run one action and return the reply.

        Raises:
            PersistenceFailure: On transport errors, HTTP error statuses,
                undecodable replies, or a reply whose result is not "success"
        """
        body = json.dumps({"action": action, **payload}, ensure_ascii=False)
        logger.info("sheet action %s", action)
        try:
            r = self._client.post(self.url, content=body.encode("utf-8"), headers=HEADERS)
            r.raise_for_status()
            reply = r.json()
        except httpx.HTTPStatusError as e:
            raise PersistenceFailure(
                f"{action}: server answered HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise PersistenceFailure(f"{action}: network error ({e})") from e
        except ValueError as e:
            raise PersistenceFailure(f"{action}: reply is not valid JSON") from e

        if not isinstance(reply, dict):
            raise PersistenceFailure(f"{action}: unexpected reply {reply!r}")
        if reply.get("result") != "success":
            message = reply.get("message") or "unknown error"
            logger.warning("sheet action %s failed: %s", action, message)
            raise PersistenceFailure(f"{action}: {message}")
        return reply


class SheetUnitStore:
    """UnitStore backed by the spreadsheet web-app."""

    def __init__(self, api: SheetAPI) -> None:
        self.api = api

    def load_building_list(self) -> list[BuildingRef]:
        reply = self.api.action("get_site_dong_list")
        return [BuildingRef.from_dict(d) for d in reply.get("data") or []]

    def load_units(self, site_name: str, dong: str) -> list[UnitRecord]:
        reply = self.api.action("read_dong_detail", site_name=site_name, dong=dong)
        try:
            return [UnitRecord.from_dict(d) for d in reply.get("data") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"read_dong_detail: malformed unit row ({e})") from e

    def save_units(self, records: list[UnitRecord]) -> SaveResult:
        reply = self.api.action("create_bulk", data=[r.to_dict() for r in records])
        return SaveResult(
            saved=int(reply.get("saved", len(records))),
            duplicates=int(reply.get("duplicates", 0)),
        )

    def update_units(self, records: list[UnitRecord]) -> None:
        self.api.action("update_dong", data=[r.to_dict() for r in records])

    def delete_building(self, site_name: str, dong: str) -> None:
        self.api.action("delete_dong", site_name=site_name, dong=dong)
