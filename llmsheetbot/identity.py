"""Worker identity written into lease markers."""

from __future__ import annotations

import re
import socket
import uuid

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def sanitize_worker_id(value: str) -> str:
    cleaned = _UNSAFE.sub("-", value.strip()).strip("-")
    if not cleaned:
        raise ValueError(f"Worker id {value!r} has no usable characters")
    return cleaned[:64]


def resolve_worker_id(configured: str | None = None) -> str:
    """Use the configured id, or derive ``<host>-<random>`` for this process."""

    if configured:
        return sanitize_worker_id(configured)
    host = socket.gethostname().split(".")[0] or "host"
    return sanitize_worker_id(f"{host}-{uuid.uuid4().hex[:6]}")


__all__ = ["resolve_worker_id", "sanitize_worker_id"]
