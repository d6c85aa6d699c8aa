"""Pytest fixtures for web API tests.

Provides a Flask app over the shared document tree, its test client and
an HttpRemoteStore that talks to the test client instead of the network.
"""

from __future__ import annotations

from typing import Any, Dict, Generator, Optional

import pytest
from flask import Flask
from flask.testing import FlaskClient

from tournament_sync.core.remote import DocumentTree, HttpRemoteStore
from tournament_sync.web import create_app

BASE_URL = "http://testserver"


class FlaskResponse:
    """requests.Response look-alike around a Flask test response."""

    def __init__(self, response: Any) -> None:
        self._response = response
        self.status_code = response.status_code

    def json(self) -> Any:
        data = self._response.get_json(silent=True)
        if data is None:
            raise ValueError("response is not JSON")
        return data


class FlaskSession:
    """Routes HttpRemoteStore requests into a Flask test client."""

    def __init__(self, client: FlaskClient, base_url: str = BASE_URL) -> None:
        self.client = client
        self.base_url = base_url
        self.closed = False

    def request(
        self,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> FlaskResponse:
        path = url[len(self.base_url):]
        response = self.client.open(path, method=method, json=json, query_string=params)
        return FlaskResponse(response)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def web_app(tree: DocumentTree) -> Generator[Flask, None, None]:
    """Create Flask app for testing.

    Args:
        tree: Document tree served by the app

    Yields:
        Flask application instance
    """
    app = create_app(tree)
    app.config["TESTING"] = True
    yield app


@pytest.fixture
def client(web_app: Flask) -> FlaskClient:
    """Create Flask test client.

    Args:
        web_app: Flask application

    Returns:
        Flask test client for making requests
    """
    return web_app.test_client()


@pytest.fixture
def http_remote(client: FlaskClient) -> HttpRemoteStore:
    """HttpRemoteStore wired to the test client."""
    return HttpRemoteStore(BASE_URL, session=FlaskSession(client), poll_interval_seconds=0.01)
