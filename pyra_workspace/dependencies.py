"""Shared FastAPI dependencies for route handlers."""

from typing import Optional

import httpx
from fastapi import Query


def get_webhook_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for outbound webhook requests.

    ``None`` means the default network transport; tests override this
    dependency with an ``httpx.MockTransport``.
    """
    return None


class Pagination:
    """``page`` / ``page_size`` query parameters."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=100),
    ):
        self.page = page
        self.page_size = page_size
