"""
Caller identity for audit logging.

Authentication happens upstream; this module only reads the display name
the gateway forwards and falls back to the anonymous sentinel.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header

ANONYMOUS = "anonymous"


def normalize_principal(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    return cleaned or ANONYMOUS


def get_principal(x_user_name: Optional[str] = Header(None, alias="X-User-Name")) -> str:
    return normalize_principal(x_user_name)
