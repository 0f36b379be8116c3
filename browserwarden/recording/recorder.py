from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from browserwarden.core.constants import COMMON_SELECTORS, DEFAULT_VIEWPORT
from browserwarden.core.errors import InvalidName, RecordingNotFound
from browserwarden.core.logging import log
from browserwarden.core.state import RecordingState
from browserwarden.recording.models import Action, Recording, RecordingMetadata
from browserwarden.recording.renderers import RENDERERS, get_renderer, render_suite
from browserwarden.utils.file_io import safe_write_text, list_files


async def capture_metadata(page: Any) -> RecordingMetadata:
    """Freeze the page's URL, viewport and user agent."""
    viewport = page.viewport_size or dict(DEFAULT_VIEWPORT)
    user_agent = await page.evaluate("navigator.userAgent")
    return RecordingMetadata(url=page.url, viewport=viewport, user_agent=user_agent)


async def find_visible_selectors(page: Any, selectors: Iterable[str] = COMMON_SELECTORS) -> List[str]:
    """Selectors from the list that resolve to a visible element on the page."""
    visible = []
    for selector in selectors:
        try:
            element = await page.query_selector(selector)
            if element and await element.is_visible():
                visible.append(selector)
        except Exception as e:
            log(f"Visibility check of {selector} failed: {e}", level="debug")
    return visible


def check_name(name: str, what: str = "test name") -> str:
    """Names become file names under the test directory, so no separators or dot names."""
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\0" in name:
        raise InvalidName(what, name)
    return name


class Recorder:
    """
    Active recordings keyed by test name.

    Several recordings may point at the same session; stop() always takes
    the earliest started one for that session.
    """

    def __init__(self, test_dir: Path):
        self.test_dir = Path(test_dir)
        self._recordings: Dict[str, Recording] = {}

    def __len__(self) -> int:
        return len(self._recordings)

    def start(self, test_name: str, session_id: str, metadata: RecordingMetadata) -> Recording:
        check_name(test_name)
        if test_name in self._recordings:
            log(f"Restarting recording '{test_name}'; previous actions discarded", level="warning")
        recording = Recording(test_name=test_name, session_id=session_id, metadata=metadata)
        self._recordings[test_name] = recording
        return recording

    def state(self, test_name: str) -> RecordingState:
        if test_name in self._recordings:
            return RecordingState.RECORDING
        # A stopped recording is one whose script is on disk in any format
        if any((self.test_dir / cls.filename(test_name)).exists() for cls in RENDERERS.values()):
            return RecordingState.STOPPED
        return RecordingState.ABSENT

    def for_session(self, session_id: str) -> List[Recording]:
        return [r for r in self._recordings.values() if r.session_id == session_id]

    def record(self, session_id: str, action: Action) -> int:
        """Append action to every active recording of the session."""
        targets = self.for_session(session_id)
        for recording in targets:
            recording.append(action)
        return len(targets)

    def stop(self, session_id: str, fmt: Optional[str] = None) -> Tuple[str, Path]:
        """Stop the session's recording, render it and write the script."""
        targets = self.for_session(session_id)
        if not targets:
            raise RecordingNotFound(f"No active recording found for session {session_id}")
        recording = targets[0]

        renderer = get_renderer(fmt)
        script = renderer.render(recording.test_name, recording.actions, recording.metadata)
        path = self.test_dir / renderer.filename(recording.test_name)
        if not safe_write_text(path, script):
            raise OSError(f"Could not write {path}")

        del self._recordings[recording.test_name]
        log(f"Recording '{recording.test_name}' stopped with {len(recording.actions)} actions", path=str(path))
        return recording.test_name, path

    def snapshot_recording(
        self,
        test_name: str,
        session_id: str,
        url: str,
        title: str,
        metadata: RecordingMetadata,
        visible_selectors: Iterable[str] = (),
        assertions: Iterable[Dict[str, Any]] = (),
    ) -> Recording:
        """Build a recording from current page state instead of live capture."""
        check_name(test_name)
        actions = [
            Action.navigate(url),
            Action.expect("url", url),
            Action.expect("title", title),
        ]
        for custom in assertions:
            actions.append(Action.expect(custom["type"], str(custom.get("expected", "")), custom.get("selector")))
        for selector in visible_selectors:
            actions.append(Action.expect("visible", "true", selector))
        return Recording(test_name=test_name, session_id=session_id, actions=actions, metadata=metadata)

    def write_regression(self, recording: Recording) -> Path:
        check_name(recording.test_name)
        renderer = get_renderer("playwright")
        script = renderer.render(recording.test_name, recording.actions, recording.metadata)
        path = self.test_dir / f"{recording.test_name}-regression.spec.js"
        if not safe_write_text(path, script):
            raise OSError(f"Could not write {path}")
        return path

    def write_suite(self, suite_name: str, test_cases: Iterable[str], fmt: Optional[str] = None) -> Tuple[Path, int]:
        """Concatenate previously generated scripts into one suite file."""
        check_name(suite_name, "suite name")
        renderer = get_renderer(fmt)
        scripts = []
        for name in test_cases:
            check_name(name)
            path = self.test_dir / renderer.filename(name)
            if path.exists():
                scripts.append(path.read_text(encoding="utf-8"))
            else:
                log(f"Test case {path.name} not found; skipped", level="warning")
        if not scripts:
            raise RecordingNotFound("No valid test cases found")
        path = self.test_dir / f"{suite_name}-suite.spec.js"
        if not safe_write_text(path, render_suite(suite_name, scripts, renderer.name)):
            raise OSError(f"Could not write {path}")
        return path, len(scripts)

    def active(self) -> List[Dict[str, object]]:
        return [r.summary() for r in self._recordings.values()]

    def generated(self) -> List[str]:
        return list_files(self.test_dir, ".spec.js")

    def orphaned(self, live_session_ids: Set[str]) -> List[str]:
        return [name for name, r in self._recordings.items() if r.session_id not in live_session_ids]

    def discard_all(self) -> int:
        count = len(self._recordings)
        if count:
            log(f"Discarding {count} unfinished recordings", level="warning",
                recordings=list(self._recordings))
        self._recordings.clear()
        return count
