"""HTTP client factory for roomwatch.

We explicitly manage the client's lifecycle (open in ``app``, ``aclose`` on
shutdown) so it is obvious when connections are created and when they end.
"""

from __future__ import annotations

import logging
import os

import httpx
from dotenv import load_dotenv


def build_http_client(timeout_seconds: float = 120.0) -> httpx.AsyncClient:
    """Create an authenticated homeserver client from environment variables.

    We read MATRIX_HOMESERVER/MATRIX_ACCESS_TOKEN via python-dotenv to keep
    secrets out of the repo.
    """

    load_dotenv()

    homeserver = os.getenv("MATRIX_HOMESERVER")
    access_token = os.getenv("MATRIX_ACCESS_TOKEN")

    # Fail fast on missing credentials to avoid a stream of 401s.
    if not homeserver or not access_token:
        raise RuntimeError("Missing MATRIX_HOMESERVER or MATRIX_ACCESS_TOKEN in environment")

    logging.getLogger(__name__).info("Initializing Matrix client for %s", homeserver)

    return httpx.AsyncClient(
        base_url=homeserver.rstrip("/"),
        headers={"Authorization": f"Bearer {access_token}"},
        timeout=httpx.Timeout(timeout_seconds, connect=10.0),
    )
