from typing import Dict, List

# Lifecycle timings (in seconds)
SESSION_TIMEOUT_SECONDS = 30 * 60
CLEANUP_INTERVAL_SECONDS = 5 * 60
SHUTDOWN_TIMEOUT_SECONDS = 10

# Memory pressure
MAX_MEMORY_MB = 2048
MEMORY_EVICTION_FRACTION = 0.25

# Zombie reconciliation
ZOMBIE_SLACK_FACTOR = 2
ENGINE_PROCESS_PATTERN = r"headless_shell|chromium"
ZOMBIE_KILL_PATTERN = r"headless_shell"
TERMINATE_GRACE_SECONDS = 3

# Browser Settings
DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
DEFAULT_VIEWPORT: Dict[str, int] = {"width": 1920, "height": 1080}
BROWSER_LAUNCH_ARGS: List[str] = ["--no-sandbox", "--disable-setuid-sandbox"]
MAIN_PAGE = "main"

# Electron
ELECTRON_CONNECT_TIMEOUT_SECONDS = 30
MAIN_EVALUATE_TIMEOUT_SECONDS = 10

# Output layout under the base directory
SCREENSHOT_DIRNAME = "screenshot"
TEST_DIRNAME = "test"
LOG_DIRNAME = "log"

# Regression probing
COMMON_SELECTORS: List[str] = [
    "h1", "h2", "h3", "button", "input", "form", ".main", ".content", "#app"
]

# Resource Limits
MAX_LOG_SIZE_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5

# Recording formats
DEFAULT_TEST_FORMAT = "playwright"
