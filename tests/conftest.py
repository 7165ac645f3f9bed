"""Shared fixtures: a fake HTTP session and ready-made credentials."""

import hashlib
from typing import Dict, List, Optional, Union

import pytest
import requests

from tsupdate.config import Credentials
from tsupdate.models import AccessLevel, Arch, Target

SITE = "http://updates.example.test/dist"


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class FakeResponse:
    """Just enough of requests.Response for the downloader."""

    def __init__(self, url: str, body: bytes = b"", status_code: int = 200, fail_after: Optional[int] = None):
        self.url = url
        self.body = body
        self.status_code = status_code
        self.headers = {"content-length": str(len(body))}
        self.encoding = None
        self.fail_after = fail_after
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}", response=self)

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self.body), chunk_size):
            if self.fail_after is not None and start >= self.fail_after:
                raise requests.ConnectionError("connection reset")
            yield self.body[start:start + chunk_size]

    def iter_lines(self, decode_unicode: bool = False):
        text = self.body.decode(self.encoding or "utf-8")
        for line in text.splitlines():
            yield line if decode_unicode else line.encode("utf-8")

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Serves fixed bodies by URL; anything else raises ConnectionError."""

    def __init__(self, routes: Optional[Dict[str, Union[bytes, FakeResponse, requests.Response, Exception]]] = None):
        self.routes = dict(routes or {})
        self.auth = None
        self.requests: List[str] = []

    def get(self, url: str, stream: bool = False, timeout: Optional[float] = None):
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, (FakeResponse, requests.Response)):
            return route
        return FakeResponse(url, route)


@pytest.fixture
def target():
    return Target("1.0", Arch.X64, AccessLevel.COM)


@pytest.fixture
def credentials():
    return Credentials(
        website=SITE,
        user="alice",
        password="s3cret",
        master_file="Updates.txt",
        tag_file="Updates.tag"
    )


@pytest.fixture
def fake_session():
    return FakeSession()
