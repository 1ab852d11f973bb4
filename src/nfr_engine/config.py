"""Store paths, retention windows, and matching constants."""

import os
from pathlib import Path

# Contract store location from environment (can be overridden by CLI)
DEFAULT_STORE_DIR: Path = Path(os.environ.get('NFR_STORE_DIR', './store')).resolve()

STORE_DIR: Path = DEFAULT_STORE_DIR

# Retention windows: (label, backward_days, forward_days) relative to a contract's end date.
# Boundaries are exact day offsets, not calendar months.
RETENTION_WINDOWS: list[tuple[str, int, int]] = [
    ('core', 91, 30),    # -3 months / +1 month
    ('6_1', 183, 30),    # -6 months / +1 month
    ('3_3', 91, 91),     # -3 months / +3 months
    ('3_6', 91, 183),    # -3 months / +6 months
    ('3_12', 91, 365),   # -3 months / +12 months
]

DEFAULT_WINDOW: str = 'core'

# Widest backward reach of any window; start of the candidate search range
LOOKBACK_DAYS: int = max(back for _, back, _ in RETENTION_WINDOWS)

# Average month length used for month/band arithmetic outside the window bounds
AVG_MONTH_DAYS: float = 30.44

# Phone values upstream systems use for "no phone on file"
PLACEHOLDER_PHONES: list[str] = [
    '00000000000',
    '00000011621',
    '0000000000',
]

# Names held by at least this many contracts are excluded from the Name + Postcode rule
COMMON_NAME_THRESHOLD: int = 5

CUSTOMER_ID_PREFIX: str = 'CUST-'
