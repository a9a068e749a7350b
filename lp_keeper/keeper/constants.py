from __future__ import annotations

# ─────────────────────────────────────────────────────────────────────────────
# DRIFT / RANGE DEFAULTS
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_REBALANCE_THRESHOLD = 5  # price steps moved before re-centering
DEFAULT_ALLOCATION_TOLERANCE_PCT = 5.0  # portfolio drift flagged above this

# ─────────────────────────────────────────────────────────────────────────────
# TIMING
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_HARVEST_INTERVAL_S = 3600.0  # hourly
DEFAULT_POLL_INTERVAL_S = 60.0
DEFAULT_CALL_TIMEOUT_S = 30.0
DEFAULT_READ_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY_S = 0.25

MIN_POLL_INTERVAL_S = 1.0

MAX_TARGET_ALLOCATION_PCT = 100.0
# Float slack when summing percentage targets such as 33.3 + 33.3 + 33.4
ALLOCATION_SUM_EPSILON = 1e-6
