"""Throughput measurement — timed download of a fixed-size object."""

from __future__ import annotations

import logging
import time
import urllib.request
from typing import Optional

import reverse_tether

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def measure_throughput(url: str, timeout: int = 30) -> Optional[float]:
    """Download ``url`` and return the rate in Mbit/s, or None if it failed."""
    req = urllib.request.Request(
        url,
        headers={"User-Agent": f"reverse-tether/{reverse_tether.__version__}"},
    )
    received = 0
    start = time.monotonic()
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            while True:
                chunk = resp.read(CHUNK_SIZE)
                if not chunk:
                    break
                received += len(chunk)
    except Exception as e:
        logger.warning("Speed test against %s failed: %s", url, e)
        return None
    elapsed = time.monotonic() - start
    if received == 0 or elapsed <= 0:
        return None
    mbps = received * 8 / elapsed / 1_000_000
    logger.info("Downloaded %d bytes in %.2fs (%.2f Mbit/s)", received, elapsed, mbps)
    return mbps


def percent_change(before: Optional[float], after: Optional[float]) -> Optional[float]:
    if before is None or after is None or before <= 0:
        return None
    return (after - before) / before * 100.0
