"""
Capabilities injected into the sandbox.

Tool code gets no ambient access to the network, the filesystem or the
clock beyond what is defined here. Every helper reports activity to the
execution monitor, so the host watchdog can tell a waiting tool from a
spinning one.
"""

from __future__ import annotations

import heapq
import itertools
import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from toolsmith.exceptions import SandboxOperationError

if TYPE_CHECKING:
    from toolsmith.config.settings import SandboxSettings

logger = logging.getLogger(__name__)
tool_logger = logging.getLogger("toolsmith.tool")

DUCKDUCKGO_URL = "https://api.duckduckgo.com/"
RESEARCH_PREVIEW_CHARS = 1000
MAX_FETCH_CHARS = 100_000


class ExecutionMonitor:
    """Activity clock for one tool call.

    Inside the tool process helpers call ``touch``, which is forwarded to the
    host through ``on_touch``. The host keeps its own monitor, fed from the
    pipe, and sets ``killed`` when the watchdog ends the process.
    """

    def __init__(self, on_touch: Callable[[], None] | None = None) -> None:
        self._on_touch = on_touch
        self.killed = False
        self.start()

    def start(self) -> None:
        self.started_at = time.monotonic()
        self.last_activity = self.started_at

    def touch(self) -> None:
        self.last_activity = time.monotonic()
        if self._on_touch is not None:
            self._on_touch()

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_activity

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at


class OperationBudget:
    """Counter of helper operations; exceeding it raises inside the sandbox."""

    def __init__(self, max_operations: int) -> None:
        self.max_operations = max_operations
        self.used = 0
        self._lock = threading.Lock()

    def spend(self, count: int = 1) -> None:
        with self._lock:
            self.used += count
            if self.used > self.max_operations:
                raise SandboxOperationError(
                    f"Tool exceeded maximum operations limit ({self.max_operations})"
                )


@dataclass(order=True)
class _Timer:
    due: float
    seq: int
    callback: Callable[..., Any] = field(compare=False)
    args: tuple[Any, ...] = field(compare=False)


class TimerQueue:
    """Deferred callbacks registered through ``set_timeout``.

    Callbacks run in due order after ``invoke`` returns, inside the same
    deadline, and may register further timers.
    """

    def __init__(self) -> None:
        self._heap: list[_Timer] = []
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, delay: float, callback: Callable[..., Any], args: tuple[Any, ...]) -> int:
        timer_id = next(self._seq)
        heapq.heappush(self._heap, _Timer(time.monotonic() + delay, timer_id, callback, args))
        return timer_id

    def cancel(self, timer_id: int) -> bool:
        for index, timer in enumerate(self._heap):
            if timer.seq == timer_id:
                self._heap.pop(index)
                heapq.heapify(self._heap)
                return True
        return False

    def drain(self, monitor: ExecutionMonitor) -> None:
        while self._heap:
            timer = heapq.heappop(self._heap)
            time.sleep(max(0.0, timer.due - time.monotonic()))
            monitor.touch()
            timer.callback(*timer.args)


def _http_get(url: str, *, timeout: float, user_agent: str, params: dict[str, str] | None = None) -> tuple[int, str]:
    if params:
        url = f"{url}?{urllib.parse.urlencode(params)}"
    req = urllib.request.Request(url, headers={"User-Agent": user_agent}, method="GET")
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        charset = resp.headers.get_content_charset() or "utf-8"
        body = resp.read(MAX_FETCH_CHARS * 4).decode(charset, errors="replace")
        return resp.status, body


def fetch_web_content(url: str, *, timeout: float, user_agent: str) -> dict[str, Any]:
    """GET a URL. Never raises for network problems; reports them instead."""
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return {"success": False, "url": url, "error": "Only absolute http(s) URLs can be fetched"}

    try:
        status, body = _http_get(url, timeout=timeout, user_agent=user_agent)
    except urllib.error.HTTPError as e:
        return {"success": False, "url": url, "status": e.code, "error": f"HTTP {e.code}: {e.reason}"}
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.warning("fetch_web_content failed for %s: %s", url, e)
        return {"success": False, "url": url, "error": str(e)}

    return {"success": True, "url": url, "status": status, "content": body[:MAX_FETCH_CHARS]}


def web_research(
    query: str,
    url: str | None = None,
    *,
    timeout: float,
    user_agent: str,
) -> dict[str, Any]:
    """Fetch a URL preview or ask the DuckDuckGo instant-answer API.

    A URL (explicit, or a query that is itself a URL) is fetched and its
    content truncated to a preview. Otherwise the instant-answer API is
    queried; when it has nothing, a structured fallback is returned.
    """
    target = url or (query if query.startswith("http") else None)
    if target:
        fetched = fetch_web_content(target, timeout=timeout, user_agent=user_agent)
        if not fetched["success"]:
            return {"success": False, "query": query, "error": fetched["error"]}
        return {
            "success": True,
            "query": query,
            "source": target,
            "results": fetched["content"][:RESEARCH_PREVIEW_CHARS],
        }

    try:
        _status, body = _http_get(
            DUCKDUCKGO_URL,
            timeout=timeout,
            user_agent=user_agent,
            params={"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"},
        )
        data = json.loads(body)
        answer = data.get("AbstractText") or data.get("Answer")
        if answer:
            return {"success": True, "query": query, "source": "duckduckgo", "results": answer}
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.info("DuckDuckGo search failed for %r, using fallback: %s", query, e)

    return {
        "success": True,
        "query": query,
        "source": "fallback",
        "results": "",
        "suggestion": "Use fetch_web_content(url) for specific websites or APIs",
    }


def build_capabilities(
    *,
    tool_name: str,
    settings: SandboxSettings,
    monitor: ExecutionMonitor,
    budget: OperationBudget,
    timers: TimerQueue,
) -> dict[str, Callable[..., Any]]:
    """Helper functions bound to one execution."""

    def _enter(operations: int = 1) -> None:
        monitor.touch()
        budget.spend(operations)

    def fetch(url: str) -> dict[str, Any]:
        _enter()
        try:
            return fetch_web_content(
                str(url), timeout=settings.http_timeout_seconds, user_agent=settings.user_agent
            )
        finally:
            monitor.touch()

    def research(query: str, url: str | None = None) -> dict[str, Any]:
        _enter()
        try:
            return web_research(
                str(query),
                url,
                timeout=settings.http_timeout_seconds,
                user_agent=settings.user_agent,
            )
        finally:
            monitor.touch()

    def sleep(seconds: float) -> None:
        _enter()
        seconds = float(seconds)
        if seconds > settings.max_timer_seconds:
            raise SandboxOperationError(
                f"Sleep duration cannot exceed {settings.max_timer_seconds:g} seconds"
            )
        time.sleep(max(0.0, seconds))
        monitor.touch()

    def set_timeout(callback: Callable[..., Any], seconds: float, *args: Any) -> int:
        _enter()
        if not callable(callback):
            raise TypeError("set_timeout callback must be callable")
        seconds = float(seconds)
        if seconds > settings.max_timer_seconds:
            raise SandboxOperationError(
                f"Timeout duration cannot exceed {settings.max_timer_seconds:g} seconds"
            )
        return timers.push(min(max(seconds, 0.0), settings.timer_cap_seconds), callback, args)

    def clear_timeout(timer_id: int) -> bool:
        _enter()
        return timers.cancel(timer_id)

    def log(message: Any, *args: Any) -> None:
        monitor.touch()
        tool_logger.info("[%s] %s", tool_name, " ".join(str(part) for part in (message, *args)))

    return {
        "fetch_web_content": fetch,
        "web_research": research,
        "sleep": sleep,
        "set_timeout": set_timeout,
        "clear_timeout": clear_timeout,
        "log": log,
        "print": log,
    }
