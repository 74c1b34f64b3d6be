from __future__ import annotations

from datetime import datetime, timezone


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def rfc1123_now() -> str:
    """HTTP-date in the form the Cosmos DB REST API expects for ``x-ms-date``."""
    return datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")
