"""Clinical hard limits applied when validating a basal profile.

A profile outside these limits is never pushed to a pump. The values are
absolute bounds, not personal settings; all glucose-based limits are in
mg/dL and mmol profiles are converted before comparison.
"""

from typing import Final

# Duration of insulin action (hours). Rapid-acting analogues act for
# roughly 5 hours; anything past 9 hours inflates IOB beyond any
# commercially available insulin.
DIA_MIN_HOURS: Final[float] = 5.0
DIA_MAX_HOURS: Final[float] = 9.0

# Insulin sensitivity factor (mg/dL per unit).
ISF_MIN_MGDL: Final[float] = 2.0
ISF_MAX_MGDL: Final[float] = 1000.0

# Insulin-to-carb ratio (grams per unit).
IC_MIN: Final[float] = 2.0
IC_MAX: Final[float] = 100.0

# Basal rate (U/h). The lower bound is the smallest step most pumps can
# deliver; the upper bound is the adult maximum of the supported pumps.
BASAL_MIN: Final[float] = 0.02
BASAL_MAX: Final[float] = 25.0

# Profile targets (mg/dL).
TARGET_MIN_MGDL: Final[float] = 72.0
TARGET_MAX_MGDL: Final[float] = 180.0
