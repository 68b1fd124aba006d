"""
System-wide constants for the reconciliation engine.

Centralizes magic numbers and labels used across modules.
"""

# Scheduler defaults
DEFAULT_THROTTLE_SECONDS = 30
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_SLOW_PASS_WARNING_SECONDS = 3.0

# Analyzer / classifier defaults
DEFAULT_DETECTION_THRESHOLD = 0.95
DEFAULT_HIGH_CONFIDENCE_RATIO = 0.10
DEFAULT_OLD_POSITION_HOURS = 24
DEFAULT_LOOKUP_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_UNKNOWN_FACTORS = 2
DEFAULT_ORDER_HISTORY_SLACK_MINUTES = 60

# Ghost score weights (sum of non-quantity weights + quantity weight = 100)
SCORE_MAX = 100.0
SCORE_QUANTITY_WEIGHT = 50.0
SCORE_NO_TRADE_HISTORY = 20.0
SCORE_NO_ORDER_HISTORY = 15.0
SCORE_OLD_POSITION = 15.0

# Cleanup
GHOST_EXIT_REASON = "ghost_position_purge"
AUDIT_LABEL_PREFIX = "ghost-positions-backup"
GHOSTS_CLEANED_EVENT = "ghosts-cleaned"

# Exchange
DEFAULT_QUOTE_ASSET = "USDT"
DEFAULT_HOLDINGS_CACHE_SECONDS = 10
DEFAULT_API_TIMEOUT_MS = 30000

