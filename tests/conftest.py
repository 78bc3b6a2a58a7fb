"""
Pytest configuration and shared fixtures.
"""

import json
import pytest
from typing import Any, Dict
from unittest.mock import MagicMock

from astromatch.logger import get_logger, reset_logger


@pytest.fixture(autouse=True)
def quiet_logger():
    """Fresh global logger per test, with no console or file output."""
    reset_logger()
    logger = get_logger(enable_file=False, enable_console=False)
    yield logger
    reset_logger()


@pytest.fixture
def breakdown() -> Dict[str, int]:
    """A complete koota breakdown summing to 18."""
    return {
        "Varna": 1,
        "Vashya": 2,
        "Tara": 1,
        "Yoni": 2,
        "Graha Maitri": 4,
        "Gana": 0,
        "Bhakoot": 0,
        "Nadi": 8,
    }


@pytest.fixture
def ashta(breakdown) -> Dict[str, Any]:
    """The inner Ashta Koota object shared by every payload shape."""
    return {
        "total_gunas": 18,
        "max_gunas": 36,
        "verdict": "Good",
        "breakdown": breakdown,
    }


@pytest.fixture
def shape_a(ashta) -> Dict[str, Any]:
    return {"ashta_koot_raw": ashta}


@pytest.fixture
def shape_b_text(ashta) -> Dict[str, Any]:
    return {"analysis": json.dumps({"ashta_koot_raw": ashta})}


@pytest.fixture
def shape_b_object(ashta) -> Dict[str, Any]:
    return {"analysis": {"ashta_koot_raw": ashta}}


@pytest.fixture
def shape_c(ashta) -> Dict[str, Any]:
    return dict(ashta)


def make_response(status: int = 200, body: Any = None, text: str = None) -> MagicMock:
    """A stand-in for requests.Response."""
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 400
    if text is not None:
        response.content = text.encode("utf-8")
        response.json.side_effect = ValueError("not json")
    elif body is None:
        response.content = b""
        response.json.side_effect = ValueError("empty body")
    else:
        response.content = json.dumps(body).encode("utf-8")
        response.json.return_value = body
    return response


@pytest.fixture
def http_session() -> MagicMock:
    """A mocked requests.Session; set .request.return_value / side_effect per test."""
    return MagicMock()


@pytest.fixture
def response():
    """Factory fixture building fake responses: response(status, body=..., text=...)."""
    return make_response
