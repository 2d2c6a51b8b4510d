"""
Retry/backoff and rate-limit-aware HTTP GET helper.
Callers (storage.cache, ingest.appveyor) get back a result dict instead of an exception so
that the client can decide how a failed call is surfaced.
"""

import os
import time
import random
import email.utils
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple
import requests

_logger = logging.getLogger(__name__)

# defaults, overridable from the environment
DEFAULT_MAX_RETRIES = int(os.getenv("TESTSTATS_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("TESTSTATS_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("TESTSTATS_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter else None
DEFAULT_MAX_BACKOFF = float(os.getenv("TESTSTATS_MAX_BACKOFF", "120.0"))
DEFAULT_TIMEOUT = float(os.getenv("TESTSTATS_HTTP_TIMEOUT", "60.0"))

# no single wait may exceed this, whatever the server asks for
WAIT_CEILING = 300.0

# runtime overrides set from the CLI
_overrides: Dict[str, Optional[float]] = {
    'max_retries': None,
    'backoff_base': None,
    'backoff_jitter': None,
    'max_backoff': None,
}


def configure_retry(
    max_retries: Optional[int] = None, backoff_base: Optional[float] = None, backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None
):
    """Override retry/backoff defaults at runtime. None leaves a setting untouched."""
    if max_retries is not None:
        _overrides['max_retries'] = int(max_retries)
    if backoff_base is not None:
        _overrides['backoff_base'] = float(backoff_base)
    if backoff_jitter is not None:
        _overrides['backoff_jitter'] = float(backoff_jitter)
    if max_backoff is not None:
        _overrides['max_backoff'] = float(max_backoff)


def reset_retry():
    """Drop all runtime overrides."""
    for k in _overrides:
        _overrides[k] = None


def _first_set(*values):
    for v in values:
        if v is not None:
            return v
    return None


def _parse_retry_after(raw: Optional[str]) -> Optional[float]:
    """Retry-After is either delta-seconds or an HTTP date."""
    if not raw:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        pass
    try:
        dt = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _header_number(headers, key: str, cast):
    val = headers.get(key)
    if val is None:
        return None
    try:
        return cast(val)
    except (TypeError, ValueError):
        return None


def _rate_limit_hints(resp) -> Tuple[Optional[float], Optional[int], Optional[float]]:
    headers = getattr(resp, 'headers', None) or {}
    return (
        _parse_retry_after(headers.get('Retry-After')),
        _header_number(headers, 'X-RateLimit-Remaining', int),
        _header_number(headers, 'X-RateLimit-Reset', float),
    )


def _is_retryable(status: int, retry_after: Optional[float], remaining: Optional[int]) -> bool:
    if status in (429, 502, 503, 504):
        return True
    if retry_after is not None:
        return True
    return remaining is not None and remaining <= 0


def _wait_for(retry_after: Optional[float], reset_at: Optional[float], backoff: float, jitter: float) -> float:
    if retry_after is not None:
        base = retry_after
    elif reset_at:
        base = max(0.0, reset_at - time.time())
    else:
        base = backoff
    return min(base + random.uniform(0, jitter), WAIT_CEILING)


def _body(resp):
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def _result(response, status: int) -> Dict[str, Any]:
    return {'response': response, 'status': status, 'timestamp': time.time()}


def perform_request_with_retries(
    url: str,
    headers: Dict[str, str],
    params: Dict[str, Any],
    cache,
    cache_key: str,
    min_wait: Optional[float],
    max_retries: Optional[int],
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
) -> Dict[str, Any]:
    """GET url, retrying connection errors and throttled/unavailable responses.

    Returns {'response', 'status', 'timestamp'}. Status 0 means the last attempt raised before a
    response arrived; 'response' then holds the exception text. Successful (200) bodies are
    written to cache under cache_key when both are given.

    Backoff base: explicit backoff_base, then configure_retry(), then min_wait, then the
    TESTSTATS_BACKOFF_BASE default. Attempts: configure_retry(), then max_retries, then
    TESTSTATS_MAX_RETRIES.
    """
    base = float(_first_set(backoff_base, _overrides['backoff_base'], min_wait, DEFAULT_BACKOFF_BASE))
    jitter = float(_first_set(backoff_jitter, _overrides['backoff_jitter'], DEFAULT_BACKOFF_JITTER, base))
    ceiling = float(_first_set(max_backoff, _overrides['max_backoff'], DEFAULT_MAX_BACKOFF))
    attempts = int(_first_set(_overrides['max_retries'], max_retries, DEFAULT_MAX_RETRIES))
    attempts = max(1, attempts)

    backoff = base
    last = _result(None, 0)
    for attempt in range(attempts):
        try:
            resp = requests.get(url, headers=headers or {}, params=params or {}, timeout=DEFAULT_TIMEOUT)
        except requests.RequestException as ex:
            _logger.debug("GET %s failed (attempt %d/%d): %s", url, attempt + 1, attempts, ex)
            last = _result(str(ex), 0)
            if attempt + 1 < attempts:
                time.sleep(min(backoff + random.uniform(0, jitter), ceiling))
                backoff = min(backoff * 2, ceiling)
            continue

        status = getattr(resp, 'status_code', 0)
        if status == 200:
            body = _body(resp)
            if cache and cache_key:
                cache.set(cache_key, body, status)
            return _result(body, status)

        retry_after, remaining, reset_at = _rate_limit_hints(resp)
        if not _is_retryable(status, retry_after, remaining):
            return _result(_body(resp), status)

        _logger.debug("GET %s returned %s (attempt %d/%d), backing off", url, status, attempt + 1, attempts)
        last = _result(getattr(resp, 'text', None), status)
        if attempt + 1 < attempts:
            time.sleep(_wait_for(retry_after, reset_at, backoff, jitter))
            backoff = min(backoff * 2, ceiling)
    return last


__all__ = ["configure_retry", "reset_retry", "perform_request_with_retries"]
