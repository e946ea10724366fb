"""Discover served model names on OpenAI-compatible endpoints."""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping

import requests


def fetch_served_models(base_url: str, logger: logging.Logger | None = None, *, timeout: float = 5.0) -> List[str]:
    """Query ``/v1/models`` and return the advertised model ids."""

    url = f"{base_url.rstrip('/')}/v1/models"
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        if logger:
            logger.warning("Unable to list models at %s: %s", url, exc)
        return []

    try:
        payload = response.json()
    except ValueError:
        if logger:
            logger.warning("Model listing at %s returned non-JSON payload", url)
        return []

    data = payload.get("data") if isinstance(payload, Mapping) else None
    if not isinstance(data, Iterable):
        return []
    models = [
        entry["id"]
        for entry in data
        if isinstance(entry, Mapping) and isinstance(entry.get("id"), str)
    ]
    if logger and models:
        logger.info("Discovered %d model(s) at %s", len(models), base_url)
    return models


def pick_model(configured: str | None, base_url: str, logger: logging.Logger | None = None) -> str:
    """Prefer the configured model; otherwise the first one the endpoint serves."""

    if configured:
        return configured
    served = fetch_served_models(base_url, logger)
    return served[0] if served else ""


__all__ = ["fetch_served_models", "pick_model"]
