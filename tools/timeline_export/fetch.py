"""
Media Fetch Module

Downloads clip media so it can be staged into the engine.

- fetch_binary(): one GET, non-2xx is a hard failure
- fetch_all(): bounded concurrent download, results in input order
"""

import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import requests

from .constants import (
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_FETCH_WORKERS,
    FETCH_TIMEOUT_ENV,
    FETCH_WORKERS_ENV,
)


class FetchError(RuntimeError):
    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


def _env_number(key: str, default: float) -> float:
    try:
        return float(os.environ.get(key, default))
    except ValueError:
        return default


def get_fetch_timeout() -> float:
    return _env_number(FETCH_TIMEOUT_ENV, DEFAULT_FETCH_TIMEOUT)


def get_fetch_workers() -> int:
    return max(1, int(_env_number(FETCH_WORKERS_ENV, DEFAULT_FETCH_WORKERS)))


def _display_url(url: str) -> str:
    # Presigned URLs carry credentials in the query string
    return url.split('?')[0]


def fetch_binary(url: str, timeout: Optional[float] = None) -> bytes:
    """
    Download url and return the raw bytes.

    Raises FetchError on a non-OK response. Connection errors and timeouts
    from requests propagate unchanged.
    """
    start_time = time.time()
    response = requests.get(url, timeout=timeout or get_fetch_timeout())

    if not response.ok:
        print(f"[Fetch] FAILED {_display_url(url)}: HTTP {response.status_code}", flush=True)
        raise FetchError(
            f"Failed to fetch media: {response.status_code} {response.reason}",
            url=url,
            status_code=response.status_code,
        )

    data = response.content
    elapsed = time.time() - start_time
    print(f"[Fetch] {_display_url(url)} {len(data)/1024/1024:.2f}MB in {elapsed:.2f}s", flush=True)
    return data


def fetch_all(
    urls: Sequence[str],
    max_workers: Optional[int] = None,
    timeout: Optional[float] = None,
) -> List[bytes]:
    """
    Download every url concurrently. The returned list is in the same order
    as urls; the first failure is raised once all submitted downloads settle.
    """
    if not urls:
        return []

    workers = min(max_workers or get_fetch_workers(), len(urls))
    if workers == 1:
        return [fetch_binary(url, timeout) for url in urls]

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as executor:
        futures = [executor.submit(fetch_binary, url, timeout) for url in urls]
        return [future.result() for future in futures]
