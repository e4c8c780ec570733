"""Session store backed by a JSON/HTTP document service.

Endpoints (relative to ``STORE_BASE_URL``):

* ``POST   /sessions``                 create, responds ``{"id": ...}``
* ``POST   /sessions/{id}/points``     union-append a batch of points
* ``PATCH  /sessions/{id}``            mark ended
* ``GET    /sessions?userId=..``       list sessions (``isActive=true`` to filter)
* ``POST   /sessions/{id}/close``      fire-and-forget close used on unload
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import (
    BEACON_TIMEOUT,
    HTTP_POOL_CONNECTIONS,
    HTTP_POOL_MAXSIZE,
    REQUEST_TIMEOUT,
    STORE_API_TOKEN,
    STORE_BASE_URL,
    STORE_MAX_RETRIES,
)
from ..errors import SessionNotFoundError, SessionStoreError
from ..models import GeoPoint, TrackingSession
from .serialization import (
    format_timestamp,
    point_to_dict,
    session_from_dict,
    session_to_dict,
)


def _build_retry(total: int) -> Retry:
    return Retry(
        total=total,
        backoff_factor=1.0,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET", "POST", "PATCH"],
    )


def create_store_session(
    token: str = STORE_API_TOKEN, *, max_retries: int = STORE_MAX_RETRIES
) -> Session:
    """Return a pooled ``requests`` session with retry and auth headers."""

    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=HTTP_POOL_CONNECTIONS,
        pool_maxsize=HTTP_POOL_MAXSIZE,
        max_retries=_build_retry(max_retries),
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update(
        {
            "Accept-Encoding": "gzip, deflate",
            "Accept": "application/json",
        }
    )
    if token:
        session.headers["Authorization"] = f"Bearer {token}"
    return session


class HttpSessionStore:
    """``SessionStore`` implementation talking to a remote document service."""

    def __init__(
        self,
        base_url: str = STORE_BASE_URL,
        *,
        session: Optional[Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        beacon_timeout: float = BEACON_TIMEOUT,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self.base_url = base_url.rstrip("/")
        self._session = session or create_store_session()
        self.timeout = timeout
        self.beacon_timeout = beacon_timeout

    # ------------------------------------------------------------------
    # SessionStore protocol
    # ------------------------------------------------------------------
    def create_session(self, session: TrackingSession) -> str:
        payload = self._request(
            "POST", "/sessions", "create session", json=session_to_dict(session)
        )
        session_id = payload.get("id") if isinstance(payload, Mapping) else None
        if not session_id:
            raise SessionStoreError("create session: response carried no id")
        return str(session_id)

    def append_points(
        self,
        session_id: str,
        points: Sequence[GeoPoint],
        *,
        storage_mode: str = "incremental",
        min_distance_m: Optional[float] = None,
    ) -> None:
        body: Dict[str, Any] = {
            "points": [point_to_dict(point) for point in points],
            "storageMode": storage_mode,
        }
        if min_distance_m is not None:
            body["minDistance"] = min_distance_m
        self._request(
            "POST",
            f"/sessions/{session_id}/points",
            f"append points session={session_id}",
            json=body,
        )

    def end_session(self, session_id: str, end_time: datetime) -> None:
        self._request(
            "PATCH",
            f"/sessions/{session_id}",
            f"end session={session_id}",
            json={"isActive": False, "endTime": format_timestamp(end_time)},
        )

    def query_active_sessions(self, user_id: str) -> List[TrackingSession]:
        return self._query(user_id, active_only=True)

    def query_all_sessions(self, user_id: str) -> List[TrackingSession]:
        return self._query(user_id, active_only=False)

    def send_beacon(
        self, session_id: str, points: Sequence[GeoPoint], end_time: datetime
    ) -> bool:
        """Queue a best-effort close request; never blocks the caller.

        Returns True once the request has been handed to a background
        thread. Delivery is not confirmed.
        """

        body = {
            "points": [point_to_dict(point) for point in points],
            "endTime": format_timestamp(end_time),
            "isActive": False,
        }
        url = f"{self.base_url}/sessions/{session_id}/close"

        def _send() -> None:
            try:
                self._session.post(url, json=body, timeout=self.beacon_timeout)
            except requests.RequestException as exc:
                self._log.debug("Beacon for session=%s failed: %s", session_id, exc)

        try:
            thread = threading.Thread(
                target=_send, name="footpath-beacon", daemon=True
            )
            thread.start()
        except RuntimeError as exc:
            self._log.warning(
                "Could not queue beacon for session=%s: %s", session_id, exc
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _query(self, user_id: str, *, active_only: bool) -> List[TrackingSession]:
        params = {"userId": user_id}
        if active_only:
            params["isActive"] = "true"
        payload = self._request(
            "GET", "/sessions", f"query sessions user={user_id}", params=params
        )
        if isinstance(payload, Mapping):
            documents = payload.get("sessions")
        else:
            documents = payload
        if not isinstance(documents, list):
            raise SessionStoreError("query sessions: unexpected response layout")
        sessions = []
        for document in documents:
            if not isinstance(document, Mapping) or not document.get("id"):
                self._log.warning("Skipping session document without id")
                continue
            try:
                sessions.append(session_from_dict(str(document["id"]), document))
            except ValueError as exc:
                self._log.warning("Skipping malformed session document: %s", exc)
        if active_only:
            sessions = [session for session in sessions if session.is_active]
        return sessions

    def _request(self, method: str, path: str, context: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise SessionStoreError(f"{context} failed: {exc}") from exc
        status = resp.status_code
        if status == 404:
            raise SessionNotFoundError(f"{context}: not found")
        if status >= 400:
            detail = _extract_error_text(resp)
            message = f"{context} request failed (status {status})"
            if detail:
                message = f"{message} | {detail}"
            self._log.error(message)
            raise SessionStoreError(message)
        if status == 204:
            return {}
        try:
            return resp.json()
        except ValueError:
            if method == "GET":
                raise SessionStoreError(f"{context}: response was not JSON")
            return {}


def _extract_error_text(resp: Any) -> Optional[str]:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, Mapping):
        for key in ("error", "message"):
            value = data.get(key)
            if value:
                return str(value)
    text = getattr(resp, "text", "") or ""
    text = text.strip()
    return text[:200] if text else None


__all__ = ["HttpSessionStore", "create_store_session"]
