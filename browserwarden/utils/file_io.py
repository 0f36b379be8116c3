import json
import traceback
from pathlib import Path
from typing import Any, List
from browserwarden.core.logging import log

def safe_read_json(path: Path, default: Any = None) -> Any:
    """
    Safely read a JSON file with robust error handling.
    """
    if default is None:
        default = {}

    try:
        if path.exists():
            content = path.read_text(encoding="utf-8")
            if not content.strip():
                return default
            return json.loads(content)
    except json.JSONDecodeError as e:
        log(f"Corrupted JSON in {path.name}: {e}", level="error")
    except PermissionError as e:
        log(f"Permission denied reading {path.name}: {e}", level="error")
    except OSError as e:
        log(f"IO error reading {path.name}: {e}", level="warning")

    return default

def safe_write_json(path: Path, data: Any) -> bool:
    """
    Safely write data to a JSON file, ensuring parent directories exist.
    """
    return safe_write_text(path, json.dumps(data, indent=2, ensure_ascii=False))

def safe_write_text(path: Path, content: str) -> bool:
    """
    Write a text file, creating parent directories. Returns False on IO errors.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return True
    except PermissionError as e:
        log(f"Permission denied writing to {path.name}: {e}", level="error")
    except OSError as e:
        log(f"IO error writing to {path.name}: {e}", level="error")
    except Exception:
        log(f"Unexpected error writing to {path.name}: {traceback.format_exc()}", level="error")
        raise

    return False

def list_files(directory: Path, suffix: str) -> List[str]:
    """Names of files in a directory ending with suffix, sorted."""
    if not directory.exists():
        return []
    return sorted(p.name for p in directory.iterdir() if p.is_file() and p.name.endswith(suffix))
