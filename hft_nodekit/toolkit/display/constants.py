# Style constants
STYLE_CYAN = "cyan"
STYLE_BRIGHT_CYAN = "bright_cyan"
STYLE_GREEN = "green"
STYLE_GREEN_BOLD = "green bold"
STYLE_RED = "red"
STYLE_BOLD_RED = "bold red"
STYLE_DIM = "dim"
STYLE_YELLOW = "yellow"
STYLE_YELLOW_BOLD = "yellow bold"
STYLE_CYAN_BOLD = "cyan bold"
STYLE_MAGENTA_BOLD = "magenta bold"

# Layout constants (Padding)
PADDING_STANDARD = (1, 1)
PADDING_NARROW = (0, 1)

# Status icons
ICON_SUCCESS = "✓"
ICON_FAILED = "✗"
ICON_SKIPPED = "–"
ICON_WARNING = "⚠"
ICON_PENDING = "⏳"

# Application/Display Specific Constants
APP_NAME = "HFT-NodeKit"

# Running state -> style
STATE_STYLES = {
    "running": STYLE_GREEN_BOLD,
    "standby": STYLE_YELLOW_BOLD,
    "stopped": STYLE_DIM,
    "error": STYLE_BOLD_RED,
    "unknown": STYLE_DIM,
}

# Stage / command result -> (icon, style)
STATUS_STYLES = {
    "success": (ICON_SUCCESS, STYLE_GREEN),
    "completed": (ICON_SUCCESS, STYLE_GREEN_BOLD),
    "skipped": (ICON_SKIPPED, STYLE_DIM),
    "warning": (ICON_WARNING, STYLE_YELLOW),
    "completed-with-warning": (ICON_WARNING, STYLE_YELLOW_BOLD),
    "pending": (ICON_PENDING, STYLE_DIM),
    "running": (ICON_PENDING, STYLE_CYAN),
    "failed": (ICON_FAILED, STYLE_BOLD_RED),
    "transportError": (ICON_FAILED, STYLE_RED),
    "remoteExecutionError": (ICON_FAILED, STYLE_RED),
    "verificationMismatch": (ICON_WARNING, STYLE_YELLOW),
}
