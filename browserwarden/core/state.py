from enum import Enum

class SessionKind(Enum):
    BROWSER = "browser"
    ELECTRON = "electron"

    @property
    def label(self) -> str:
        return "Session" if self is SessionKind.BROWSER else "Electron session"

class CloseReason(Enum):
    CLIENT = "client"
    IDLE_TIMEOUT = "idle_timeout"
    MEMORY_PRESSURE = "memory_pressure"
    CLOSE_ALL = "close_all"
    SHUTDOWN = "shutdown"

class RecordingState(Enum):
    ABSENT = "ABSENT"
    RECORDING = "RECORDING"
    STOPPED = "STOPPED"

class TerminationScope(Enum):
    ORPHANED = "orphaned"  # re-parented engine processes nobody owns
    OWNED = "owned"  # engine processes descended from this process
