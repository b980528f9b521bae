"""Test doubles for the network edges: requests sessions, websocket apps, executors."""
import datetime
import json
from concurrent.futures import Executor, Future

import requests

from core.exceptions import CloudError


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=None):
        self.status_code = status_code
        self._data = data
        self.text = text if text is not None else json.dumps(data)

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._data is None:
            raise ValueError("no JSON body")
        return self._data


class FakeSession:
    """Routes (method, url) to canned responses; unknown routes answer 404."""

    def __init__(self):
        self.headers = {}
        self.calls = []
        self.routes = {}
        self.failing = set()

    def route(self, method, url, *responses):
        self.routes[(method, url)] = list(responses)

    def fail(self, method, url):
        self.failing.add((method, url))

    def _request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if (method, url) in self.failing:
            raise requests.ConnectionError("connection refused")
        queue = self.routes.get((method, url))
        if not queue:
            return FakeResponse(404, {"message": "not found"})
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def get(self, url, **kwargs):
        return self._request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._request("POST", url, **kwargs)

    def patch(self, url, **kwargs):
        return self._request("PATCH", url, **kwargs)


class FakeWebSocketApp:
    instances = []

    def __init__(self, url, header=None, on_open=None, on_message=None, on_error=None):
        self.url = url
        self.header = header or []
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.sent = []
        self.closed = False
        FakeWebSocketApp.instances.append(self)

    def run_forever(self):
        return None

    def send(self, data):
        self.sent.append(data)

    def close(self):
        self.closed = True

    # helpers driving the callbacks the way the socket thread would
    def open(self):
        self.on_open(self)

    def emit(self, event):
        self.on_message(self, event if isinstance(event, str) else json.dumps(event))

    def fail(self, error):
        self.on_error(self, error)


class ManualExecutor(Executor):
    """Queues submitted work until run_all(), so tests control when pushes land."""

    def __init__(self):
        self.queue = []

    def submit(self, fn, *args, **kwargs):
        fut = Future()
        self.queue.append((fut, fn, args, kwargs))
        return fut

    def run_all(self):
        while self.queue:
            fut, fn, args, kwargs = self.queue.pop(0)
            try:
                fut.set_result(fn(*args, **kwargs))
            except Exception as e:
                fut.set_exception(e)

    def shutdown(self, wait=True, **kwargs):
        pass


class FakeSubscription:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeCloudClient:
    """In-memory stand-in for PocketBaseClient: one document, many listeners."""

    def __init__(self, document=None):
        self.document = document
        self.saved = []
        self.fail_push = False
        self.fail_fetch = False
        self.deliveries = []
        self.subscriptions = []

    def login(self):
        return False

    def fetch_document(self):
        if self.fail_fetch:
            raise CloudError("Fetch failed: offline")
        return self.document

    def save_document(self, payload):
        if self.fail_push:
            raise CloudError("Save failed: 403 forbidden")
        self.saved.append(payload)
        self.document = payload
        return {"id": "protrackstate01", "payload": payload}

    def subscribe(self, on_change, on_error=None):
        self.deliveries.append(on_change)
        sub = FakeSubscription()
        self.subscriptions.append(sub)
        return sub

    def broadcast(self, payload):
        """Server-side change notification reaching every listener ever registered."""
        for deliver in list(self.deliveries):
            deliver(payload)


SYNC_RAW = {"baseUrl": "http://pb.local:8090", "collection": "protrack", "documentId": "protrackstate01"}
NOW = datetime.datetime(2026, 10, 21, 9, 30, 0)  # a Wednesday
