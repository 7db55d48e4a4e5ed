"""
Application constants and environment-driven configuration.
"""
import os

# Database
DATABASE_URL = os.getenv("GOALMATE_DATABASE_URL", "sqlite:///./goalmate.db")

# Security
API_KEY = os.getenv("GOALMATE_API_KEY", "change-me")

# Logging
DEFAULT_LOG_DIRECTORY_PROD = "/var/log/goalmate"
DEFAULT_LOG_DIRECTORY_DEV = "./logs"

# CORS
CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "GOALMATE_CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if origin.strip()
]

# Progress updates
PROGRESS_MAX_RETRIES = int(os.getenv("GOALMATE_PROGRESS_MAX_RETRIES", "3"))

# Non-premium users can only create this many goals
FREE_GOAL_LIMIT = int(os.getenv("GOALMATE_FREE_GOAL_LIMIT", "3"))

# Reminders
REMINDERS_ENABLED = os.getenv("GOALMATE_REMINDERS_ENABLED", "true").lower() == "true"
REMINDER_HOUR = int(os.getenv("GOALMATE_REMINDER_HOUR", "9"))
REMINDER_WINDOW_HOURS = 24

# Goal types
GOAL_TYPE_INDIVIDUAL = "Individual"
GOAL_TYPE_GROUP = "Group"
GOAL_TYPE_COLLABORATIVE = "Collaborative"
GOAL_TYPES = (GOAL_TYPE_INDIVIDUAL, GOAL_TYPE_GROUP, GOAL_TYPE_COLLABORATIVE)

# Collaborative sub-types
COLLABORATIVE_COMPETE = "compete"
COLLABORATIVE_ACHIEVE_TOGETHER = "achieve-together"
COLLABORATIVE_TYPES = (COLLABORATIVE_COMPETE, COLLABORATIVE_ACHIEVE_TOGETHER)

# Goal / sub-task status
STATUS_NOT_STARTED = "Not Started"
STATUS_IN_PROGRESS = "In Progress"
STATUS_COMPLETED = "Completed"
STATUS_ARCHIVED = "Archived"
GOAL_STATUSES = (STATUS_NOT_STARTED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_ARCHIVED)
SUBTASK_STATUSES = (STATUS_NOT_STARTED, STATUS_IN_PROGRESS, STATUS_COMPLETED)

# Categories
CATEGORY_FITNESS = "Fitness"
CATEGORY_EDUCATION = "Education"
BUILTIN_CATEGORIES = (CATEGORY_FITNESS, CATEGORY_EDUCATION)

FITNESS_TYPES = (
    "Running", "Cycling", "Swimming", "Weight Training",
    "Tennis", "Yoga", "Squash", "Basketball",
)
EDUCATION_TYPES = (
    "Course Completion", "Book Reading", "Skill Development",
    "Certification", "Language Learning",
)

PRIORITIES = ("Low", "Medium", "High")
FREQUENCIES = ("Daily", "Weekly", "Monthly")
PROGRESS_FREQUENCIES = ("Daily", "Weekly")

# Percentage bounds
PERCENT_MIN = 0.0
PERCENT_MAX = 100.0
# Decimal places kept on computed percentages; absorbs float drift near the bounds
PERCENT_PRECISION = 6

# Notification event types
EVENT_GOAL_PROGRESS_UPDATED = "goal_progress_updated"
EVENT_GOAL_COMPLETED = "goal_completed"
EVENT_GOAL_REMINDER = "goal_reminder"
