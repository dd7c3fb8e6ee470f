"""Lightweight HTTPS reachability check for an already-running service.

Security note: the probe deliberately accepts any certificate and any
hostname (``verify=False``).  Multiplexer web servers on private hosts
almost always serve self-signed certificates; the probe only learns whether
something answers and never sends credentials, so the trade-off is accepted
here and must not be copied into code that transmits secrets.
"""

from __future__ import annotations

from typing import Optional

import httpx

from muxlink.constants import LOOPBACK_ALIAS, PROBE_TIMEOUT_MS, SERVICE_PORT
from muxlink.managers.logger import get_logger
from muxlink.remote.channel import dial_host

log = get_logger(__name__)


def is_reachable_status(code: int) -> bool:
    # 401/403: the endpoint exists but wants auth
    return 200 <= code <= 399 or code in (401, 403)


def probe(
    url: str,
    timeout_ms: int = PROBE_TIMEOUT_MS,
    transport: Optional[httpx.BaseTransport] = None,
) -> bool:
    """HEAD *url*; True when it answers with a reachable status.  Never raises."""
    try:
        with httpx.Client(
            verify=False,
            timeout=timeout_ms / 1000.0,
            transport=transport,
        ) as client:
            response = client.head(url)
    except Exception as exc:  # noqa: BLE001
        log.debug("Probe %s failed: %s", url, exc)
        return False
    log.debug("Probe %s → %d", url, response.status_code)
    return is_reachable_status(response.status_code)


def candidate_url(
    host: str,
    session_name: Optional[str] = None,
    port: int = SERVICE_PORT,
    loopback_alias: Optional[str] = LOOPBACK_ALIAS,
    token: Optional[str] = None,
) -> str:
    """``https://<host>:<port>/<session>``, optionally carrying a known token."""
    path = f"/{session_name}" if session_name else ""
    url = f"https://{dial_host(host, loopback_alias)}:{port}{path}"
    return f"{url}?token={token}" if token else url
