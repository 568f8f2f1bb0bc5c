"""Shared fixtures: a scripted stand-in for ``requests.Session``."""

import json
from typing import Any

import pytest

from charm.config import ClientConfig
from charm.transport import CharmTransport

BASE_URL = "http://localhost:5002/charm"


class FakeResponse:
    """Minimal ``requests.Response`` look-alike."""

    def __init__(self, status_code: int = 200, json_data: Any = None, text: str | None = None):
        self.status_code = status_code
        self._json = json_data
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeSession:
    """Routes requests by (method, path) to queued responses.

    Each route holds a queue; items are consumed in order and the last one
    repeats. An exception instance in the queue is raised instead of
    returned. Every request is recorded in ``calls`` as (method, path, kwargs).
    """

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def add(self, method: str, path: str, *responses: Any) -> "FakeSession":
        self.routes.setdefault((method, path), []).extend(responses)
        return self

    def paths(self, method: str | None = None) -> list[str]:
        return [path for m, path, _ in self.calls if method is None or m == method]

    def _dispatch(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        self.calls.append((method, path, kwargs))
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._dispatch("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._dispatch("POST", url, **kwargs)


def job_routes(session: FakeSession, path: str, job_id: str, statuses: list[Any], result: Any) -> None:
    """Script one submit -> poll -> fetch cycle on ``path``."""
    session.add("POST", path, FakeResponse(200, {"job_id": job_id}))
    session.add("GET", f"{path}/{job_id}", *statuses)
    session.add("GET", f"{path}/{job_id}/result", result)


def page_doc(doc_id: str, pages: list[str], page_metadata: list[dict] | None = None, **metadata: Any) -> dict:
    """A transcription result with one ``pages`` chunk per entry."""
    page_metadata = page_metadata or [{"page_number": i + 1} for i in range(len(pages))]
    return {
        "id": doc_id,
        "content": "\n".join(pages),
        "metadata": dict(metadata),
        "chunks": {
            "pages": [
                {
                    "id": f"{doc_id}/pages@{i}",
                    "parent": doc_id,
                    "content": text,
                    "metadata": page_metadata[i],
                }
                for i, text in enumerate(pages)
            ]
        },
    }


@pytest.fixture
def config():
    return ClientConfig()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def transport(config, session):
    return CharmTransport(config, session)


@pytest.fixture
def no_sleep():
    """Records requested sleeps without sleeping."""
    return []
