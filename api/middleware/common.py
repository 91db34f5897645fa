"""
api/middleware/common.py -- Helpers shared by the gates.
"""

from __future__ import annotations

from collections.abc import Iterable

from fastapi import Request


def is_ajax(request: Request) -> bool:
    """True when the caller expects JSON rather than an HTML page.

    Either the jQuery-style X-Requested-With marker or an Accept header that
    asks for application/json counts.
    """
    if request.headers.get("X-Requested-With", "") == "XMLHttpRequest":
        return True
    return "application/json" in request.headers.get("Accept", "")


def path_matches(path: str, prefixes: Iterable[str]) -> bool:
    """Segment-aware prefix match: "/api" matches "/api" and "/api/x", not "/apix".

    Prefixes ending in "/" match anything beneath them.
    """
    for prefix in prefixes:
        if prefix.endswith("/"):
            if path.startswith(prefix):
                return True
        elif path == prefix or path.startswith(prefix + "/"):
            return True
    return False
