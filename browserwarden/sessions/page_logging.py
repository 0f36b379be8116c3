from datetime import datetime
from pathlib import Path
from typing import Any, Optional, TextIO

from browserwarden.core.logging import log


def _now() -> str:
    return datetime.now().isoformat()


class PageLogSink:
    """Append-only console log file for one page of one session.

    The owning session closes it exactly once; later writes and closes are
    ignored.
    """

    def __init__(self, path: Path, session_id: str, page_id: str):
        self.path = path
        self.session_id = session_id
        self.page_id = page_id
        self._stream: Optional[TextIO] = None

    @classmethod
    def open(cls, log_dir: Path, session_id: str, page_id: str, url: str = "") -> "PageLogSink":
        log_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        sink = cls(log_dir / f"console-{session_id}-{page_id}-{stamp}.log", session_id, page_id)
        sink._stream = open(sink.path, "a", encoding="utf-8")
        sink.write(f"=== Console Log Started: {_now()} ===\n")
        sink.write(f"Session: {session_id}, Page: {page_id}\n")
        sink.write(f"URL: {url}\n")
        sink.write("=" * 50 + "\n\n")
        return sink

    @property
    def closed(self) -> bool:
        return self._stream is None

    def write(self, text: str) -> None:
        if self._stream is None:
            return
        self._stream.write(text)
        self._stream.flush()

    def attach(self, page: Any) -> None:
        """Subscribe to the page's console, error and failed-request events."""

        def on_console(msg):
            entry = f"[{_now()}] [{msg.type.upper()}]"
            location = msg.location or {}
            if location.get("url"):
                entry += f" [{location['url']}:{location.get('lineNumber')}:{location.get('columnNumber')}]"
            self.write(f"{entry} {msg.text}\n")

        def on_page_error(error):
            stack = getattr(error, "stack", "") or ""
            self.write(f"[{_now()}] [ERROR] {error}\n{stack}\n")

        def on_request_failed(request):
            self.write(f"[{_now()}] [REQUEST_FAILED] {request.failure} - {request.url}\n")

        page.on("console", on_console)
        page.on("pageerror", on_page_error)
        page.on("requestfailed", on_request_failed)
        log(f"Console logging enabled for session {self.session_id}, page {self.page_id}: {self.path}")

    def close(self) -> None:
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            stream.write(f"\n=== Console Log Ended: {_now()} ===\n")
        finally:
            stream.close()
