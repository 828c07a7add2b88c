"""
Constants used across the competition scoring system.
"""

# Ring scoring
RING_CLOSE_POINTS = 100  # Points per ring closed in ring_close scoring
PERCENTAGE_MAX_POINTS = 100

# Default ring goals for profiles without their own
DEFAULT_MOVE_GOAL = 400
DEFAULT_EXERCISE_GOAL = 30
DEFAULT_STAND_GOAL = 12

# Plausibility limits for a single day of health data
MAX_MOVE_CALORIES = 10000
MAX_EXERCISE_MINUTES = 1440
MAX_STAND_HOURS = 24
MAX_STEP_COUNT = 100000
MAX_HISTORY_DAYS = 365
# Local days run up to UTC+14, one calendar day past the UTC date
MAX_FUTURE_DAYS = 1

# Competition classification
WEEKEND_START_WEEKDAY = 5  # Saturday (date.weekday())
WEEKEND_DURATION_DAYS = 2
WEEKLY_DURATION_DAYS = 7
MONTHLY_MIN_DAYS = 28
MONTHLY_MAX_DAYS = 31
MAX_COMPETITIONS_PER_DAY = 10

# Leave-competition payment
LEAVE_PRODUCT_ID = "movetogether_leave_competition"
LEAVE_PRICE = 2.99
LEAVE_CURRENCY = "USD"

# Completion deadline
DEFAULT_WESTERNMOST_OFFSET_HOURS = -10  # Hawaii
COMPLETION_SAFETY_BUFFER_HOURS = 12
