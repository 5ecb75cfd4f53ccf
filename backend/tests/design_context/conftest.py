"""Shared fixtures for design_context tests.

HTTP is mocked at the ``_get_client`` / ``_get_download_client`` seam so the
real retry, rate-limit and cache code runs on every call.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from design_context.integrations.figma_client import FigmaClient
from design_context.models import ClientConfig


def make_response(status_code: int = 200, payload: Optional[Dict[str, Any]] = None,
                  content: bytes = b"", text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload if payload is not None else {}
    resp.content = content
    resp.text = text
    return resp


def make_http(*responses: Any) -> AsyncMock:
    """AsyncMock http client whose .get returns/raises ``responses`` in order."""
    http = AsyncMock()
    http.get = AsyncMock(side_effect=list(responses))
    return http


def frame(node_id: str, name: str, x: float, y: float, w: float, h: float,
          node_type: str = "FRAME", **extra: Any) -> Dict[str, Any]:
    node = {
        "id": node_id,
        "name": name,
        "type": node_type,
        "absoluteBoundingBox": {"x": x, "y": y, "width": w, "height": h},
        "children": [],
    }
    node.update(extra)
    return node


@pytest.fixture
def fake_sleep():
    return AsyncMock()


@pytest.fixture
def client(fake_sleep):
    """FigmaClient with a test token, no real backoff sleeps."""
    return FigmaClient(
        token="test-figma-token-123",
        config=ClientConfig(retry_base_delay=0.01),
        sleep=fake_sleep,
    )


@pytest.fixture
def sample_tree():
    """Frame F (0,0,400,300) holding button B (150,120,100,40) and a title."""
    return frame(
        "1:1", "F", 0, 0, 400, 300,
        children=[
            frame(
                "1:2", "Primary Button", 150, 120, 100, 40,
                fills=[{"type": "SOLID", "color": {"r": 0.2, "g": 0.4, "b": 1.0, "a": 1.0}}],
                cornerRadius=8,
            ),
            frame(
                "1:3", "Title", 20, 20, 200, 32, node_type="TEXT",
                characters="Welcome back",
                style={"fontFamily": "Inter", "fontSize": 28, "fontWeight": 700},
            ),
        ],
    )
