"""
Probes — network reachability.

DNS checks go through ``getent ahosts`` (the same resolver path
pacman and git use) with a per-attempt timeout; waits poll within an
overall budget so one unreachable host cannot hang a run.
"""

from __future__ import annotations

import logging
import threading
import time
import urllib.error
import urllib.request
from typing import Callable

from cortado import __version__
from cortado.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)


def is_host_resolvable(
    runner: CommandRunner,
    host: str,
    timeout: float = 5,
) -> bool | None:
    """Whether ``host`` resolves (None = resolver timed out or missing)."""
    result = runner.run(["getent", "ahosts", host], timeout=timeout)
    if result.ok:
        return bool(result.stdout.strip())
    if result.timed_out or result.missing:
        return None
    # getent: 2 = key not found
    return False


def hosts_resolvable(
    runner: CommandRunner,
    hosts: list[str],
    timeout: float = 5,
) -> bool | None:
    states = [is_host_resolvable(runner, h, timeout=timeout) for h in hosts]
    if all(s is True for s in states):
        return True
    if any(s is False for s in states):
        return False
    return None


def wait_for_host(
    runner: CommandRunner,
    host: str,
    attempt_timeout: float = 5,
    budget: float = 60,
    interval: float = 1.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    cancel: threading.Event | None = None,
) -> bool:
    """Poll until ``host`` resolves or ``budget`` seconds have passed."""
    deadline = clock() + budget
    attempts = 0
    while True:
        attempts += 1
        if is_host_resolvable(runner, host, timeout=attempt_timeout):
            logger.info("DNS OK: %s (attempt %d)", host, attempts)
            return True
        if cancel is not None and cancel.is_set():
            return False
        if clock() + interval > deadline:
            logger.warning("DNS for %s not available after %.0fs", host, budget)
            return False
        sleep(interval)


def is_url_reachable(url: str, timeout: float = 5) -> dict:
    """HEAD ``url`` for ``cortado doctor``.

    Any HTTP answer, error statuses included, proves the mirror or forge
    is reachable; only transport failures count against it.
    """
    headers = {"User-Agent": f"cortado/{__version__}"}
    try:
        request = urllib.request.Request(url, method="HEAD", headers=headers)
        with urllib.request.urlopen(request, timeout=timeout) as resp:
            return {"url": url, "reachable": True, "status": resp.status}
    except urllib.error.HTTPError as e:
        return {"url": url, "reachable": True, "status": e.code}
    except (urllib.error.URLError, OSError, ValueError) as e:
        return {"url": url, "reachable": False, "error": str(getattr(e, "reason", e))}
