from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import requests
from websocket import WebSocketApp, WebSocketException

from core import config
from core.exceptions import CloudError, SyncConfigError

log = logging.getLogger(__name__)

_COLLECTION_RE = re.compile(r"^[A-Za-z0-9_]{1,64}$")
_RECORD_ID_RE = re.compile(r"^[A-Za-z0-9]{1,15}$")


@dataclass
class SyncConfig:
    base_url: str
    collection: str = config.DEFAULT_COLLECTION
    document_id: str = config.DEFAULT_DOCUMENT_ID
    identity: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"baseUrl": self.base_url, "collection": self.collection, "documentId": self.document_id}
        for key, value in (("identity", self.identity), ("password", self.password), ("token", self.token)):
            if value:
                d[key] = value
        return d


def parse_sync_config(raw: Any) -> SyncConfig:
    """Validate a remote-sync configuration without touching the network."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise SyncConfigError(f"Sync config is not valid JSON: {e}")
    if not isinstance(raw, dict):
        raise SyncConfigError("Sync config must be a JSON object")

    base_url = str(raw.get("baseUrl") or "").strip()
    parsed = urlparse(base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise SyncConfigError(f"baseUrl must be an http(s) URL, got '{base_url}'")

    collection = str(raw.get("collection") or config.DEFAULT_COLLECTION)
    if not _COLLECTION_RE.match(collection):
        raise SyncConfigError(f"collection '{collection}' must be 1-64 letters, digits or underscores")
    document_id = str(raw.get("documentId") or config.DEFAULT_DOCUMENT_ID)
    if not _RECORD_ID_RE.match(document_id):
        raise SyncConfigError(f"documentId '{document_id}' must be 1-15 letters or digits")

    identity = raw.get("identity") or None
    password = raw.get("password") or None
    if bool(identity) != bool(password):
        raise SyncConfigError("identity and password must be given together")

    return SyncConfig(base_url=base_url.rstrip("/"), collection=collection, document_id=document_id,
                      identity=identity, password=password, token=raw.get("token") or None)


class RealtimeSubscription:
    def __init__(self, ws: WebSocketApp):
        self.ws = ws
        self.closed = False

    def close(self):
        self.closed = True
        try:
            self.ws.close()
        except (OSError, WebSocketException) as e:  # socket may already be gone
            log.debug("[realtime] close: %s", e)


class PocketBaseClient:
    """Reads and overwrites the single state record; listens to it over realtime."""

    def __init__(self, sync_config: SyncConfig, session: Optional[requests.Session] = None,
                 ws_factory: Callable[..., WebSocketApp] = WebSocketApp):
        self.config = sync_config
        self.base_url = sync_config.base_url.rstrip("/")
        self.session = session or requests.Session()
        self.ws_factory = ws_factory
        self.token: Optional[str] = sync_config.token
        self.user_id: Optional[str] = None
        if self.token:
            self.session.headers.update({"Authorization": f"Bearer {self.token}"})

    # ---------- auth ----------
    def login(self) -> bool:
        """Authenticate and learn the user id that owns the state record.

        Password credentials are exchanged for a token; a bare token is
        refreshed, which also returns its user record.
        """
        if self.config.identity:
            url = f"{self.base_url}/api/collections/users/auth-with-password"
            body = {"identity": self.config.identity, "password": self.config.password}
        elif self.token:
            url = f"{self.base_url}/api/collections/users/auth-refresh"
            body = None
        else:
            return False
        try:
            r = self.session.post(url, json=body, timeout=config.HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise CloudError(f"Login failed: {e}")
        if not r.ok:
            raise CloudError(f"Login failed: {r.status_code} {r.text}")
        data = r.json()
        self.token = data.get("token")
        self.user_id = data.get("record", {}).get("id")
        if not self.token or not self.user_id:
            raise CloudError("Missing token or user id in login response")
        self.session.headers.update({"Authorization": f"Bearer {self.token}"})
        return True

    # ---------- document ----------
    def _records_url(self) -> str:
        return f"{self.base_url}/api/collections/{self.config.collection}/records"

    def fetch_document(self) -> Optional[Dict[str, Any]]:
        """Return the stored payload, or None when the record does not exist yet."""
        url = f"{self._records_url()}/{self.config.document_id}"
        try:
            r = self.session.get(url, timeout=config.HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise CloudError(f"Fetch failed: {e}")
        if r.status_code == 404:
            return None
        if not r.ok:
            raise CloudError(f"Fetch failed: {r.status_code} {r.text}")
        return _payload_of(r.json())

    def save_document(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Overwrite the whole record; create it on first save."""
        url = f"{self._records_url()}/{self.config.document_id}"
        try:
            r = self.session.patch(url, json={"payload": payload}, timeout=config.HTTP_TIMEOUT)
            if r.status_code == 404:
                if self.token and not self.user_id:
                    self.login()  # owner-only rules hide a record created without owner
                body = {"id": self.config.document_id, "payload": payload}
                if self.user_id:
                    body["owner"] = self.user_id
                r = self.session.post(self._records_url(), json=body, timeout=config.HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise CloudError(f"Save failed: {e}")
        if not r.ok:
            raise CloudError(f"Save failed: {r.status_code} {r.text}")
        return r.json()

    # ---------- realtime ----------
    def realtime_url(self) -> str:
        return self.base_url.replace("https://", "wss://").replace("http://", "ws://") + "/api/realtime"

    def subscribe(self, on_change: Callable[[Dict[str, Any]], None],
                  on_error: Optional[Callable[[Any], None]] = None) -> RealtimeSubscription:
        headers = [f"Authorization: Bearer {self.token}"] if self.token else []
        doc_id = self.config.document_id

        def on_open(ws):
            sub = {"id": f"sub_{self.config.collection}", "type": "subscribe",
                   "collection": self.config.collection, "filter": f'id = "{doc_id}"'}
            ws.send(json.dumps(sub))
            log.info("[realtime] subscribed to %s/%s", self.config.collection, doc_id)

        def on_message(ws, message):
            try:
                event = json.loads(message)
            except ValueError:
                log.debug("[realtime] ignoring non-JSON frame")
                return
            if not isinstance(event, dict) or not isinstance(event.get("record"), dict):
                return  # connect/ack frames carry no record
            record = event["record"]
            if record.get("id") not in (None, doc_id):
                return
            payload = _payload_of(record) if "payload" in record else None
            if payload is None:
                # notification without body: pull the current document
                try:
                    payload = self.fetch_document()
                except CloudError as e:
                    log.warning("[realtime] refresh after change failed: %s", e)
                    return
            if payload is not None:
                on_change(payload)

        def _on_error(ws, error):
            log.warning("[realtime] listener error: %s", error)
            if on_error:
                on_error(error)

        try:
            ws = self.ws_factory(self.realtime_url(), header=headers,
                                 on_open=on_open, on_message=on_message, on_error=_on_error)
            threading.Thread(target=ws.run_forever, daemon=True).start()
        except Exception as e:
            raise CloudError(f"Realtime setup failed: {e}")
        return RealtimeSubscription(ws)


def _payload_of(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    payload = record.get("payload")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError:
            return None
    return payload if isinstance(payload, dict) else None
