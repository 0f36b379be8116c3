import time
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from browserwarden.core.constants import DEFAULT_USER_AGENT, DEFAULT_VIEWPORT

ActionType = Literal["navigate", "click", "fill", "select", "press", "wait", "assert"]
AssertionType = Literal["text", "visible", "enabled", "url", "title"]


class Assertion(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: AssertionType
    expected: str


class Action(BaseModel):
    """One captured step. Immutable once appended to a recording."""

    model_config = ConfigDict(frozen=True)

    type: ActionType
    timestamp: float = Field(default_factory=time.time)
    selector: Optional[str] = None
    value: Optional[str] = None
    url: Optional[str] = None
    assertion: Optional[Assertion] = None

    @classmethod
    def navigate(cls, url: str) -> "Action":
        return cls(type="navigate", url=url)

    @classmethod
    def click(cls, selector: str) -> "Action":
        return cls(type="click", selector=selector)

    @classmethod
    def fill(cls, selector: str, value: str) -> "Action":
        return cls(type="fill", selector=selector, value=value)

    @classmethod
    def select(cls, selector: str, value: str) -> "Action":
        return cls(type="select", selector=selector, value=value)

    @classmethod
    def press(cls, key: str, selector: Optional[str] = None) -> "Action":
        return cls(type="press", selector=selector, value=key)

    @classmethod
    def wait(cls, selector: str) -> "Action":
        return cls(type="wait", selector=selector)

    @classmethod
    def expect(cls, kind: AssertionType, expected: str, selector: Optional[str] = None) -> "Action":
        return cls(type="assert", selector=selector, assertion=Assertion(type=kind, expected=expected))


class RecordingMetadata(BaseModel):
    """Page facts frozen when the recording starts."""

    model_config = ConfigDict(frozen=True)

    url: str = ""
    viewport: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_VIEWPORT))
    user_agent: str = DEFAULT_USER_AGENT


class Recording(BaseModel):
    test_name: str
    session_id: str
    actions: List[Action] = []
    start_time: float = Field(default_factory=time.time)
    metadata: RecordingMetadata = Field(default_factory=RecordingMetadata)

    def append(self, action: Action) -> None:
        self.actions.append(action)

    def summary(self) -> Dict[str, object]:
        return {
            "name": self.test_name,
            "sessionId": self.session_id,
            "actionsCount": len(self.actions),
            "startTime": time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(self.start_time)),
            "url": self.metadata.url,
        }
