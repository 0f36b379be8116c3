class WardenError(Exception):
    """Base class for errors reported back to clients as text."""


class SessionExists(WardenError):
    def __init__(self, session_id: str, kind: str = "Session"):
        super().__init__(f"{kind} {session_id} already exists")
        self.session_id = session_id


class NotFound(WardenError):
    pass


class SessionNotFound(NotFound):
    def __init__(self, session_id: str, kind: str = "Session"):
        super().__init__(f"{kind} {session_id} not found")
        self.session_id = session_id


class PageNotFound(NotFound):
    def __init__(self, session_id: str, page_id: str):
        super().__init__(f"Page {page_id} not found in session {session_id}")
        self.session_id = session_id
        self.page_id = page_id


class RecordingNotFound(NotFound):
    pass


class ExternalFailure(WardenError):
    """A driver or process call failed. The cause is chained."""


class PolicyIntrospectionFailure(WardenError):
    """The process table could not be queried. Never surfaced to clients."""


class UnknownTool(WardenError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ShuttingDown(WardenError):
    def __init__(self):
        super().__init__("BrowserWarden is shutting down")


class InvalidName(WardenError):
    def __init__(self, what: str, name: str):
        super().__init__(f"Invalid {what}: {name!r}")
        self.name = name
