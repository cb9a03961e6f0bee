import os

DEFAULT_DB_PATH = "planner.db"

JWT_SECRET = os.environ.get("JWT_SECRET", "dev-secret")
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")

CORS_ALLOW_ORIGINS = os.environ.get("CORS_ALLOW_ORIGINS", "")
CORS_ALLOW_ORIGIN_REGEX = os.environ.get(
    "CORS_ALLOW_ORIGIN_REGEX", r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"
)

PLANNER_API_URL = os.environ.get("PLANNER_API_URL", "http://localhost:8000").strip()

ASSIGNMENT_DEBOUNCE_SECONDS = float(os.environ.get("ASSIGNMENT_DEBOUNCE_SECONDS", "1.0"))
ASSIGN_TASKS_DELAY_SECONDS = float(os.environ.get("ASSIGN_TASKS_DELAY_SECONDS", "0.5"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_PATH = os.environ.get("LOG_PATH", "").strip()

CATEGORIES = ("normal", "materials", "storingen", "specials")
DEFAULT_CATEGORY = "normal"

# Bracket markers accepted on a location header, mapped to their category.
CATEGORY_MARKERS = {
    "normal": "normal",
    "materials": "materials",
    "material": "materials",
    "materiaal": "materials",
    "storingen": "storingen",
    "storing": "storingen",
    "emergency": "storingen",
    "urgent": "storingen",
    "specials": "specials",
    "special": "specials",
    "bijzonder": "specials",
    "extra": "specials",
}

# Substrings detected in an address when no marker is given.
CATEGORY_KEYWORDS = {
    "materials": ("materiaal", "material"),
    "storingen": ("storing", "emergency", "urgent"),
    "specials": ("special", "bijzonder", "extra"),
}

# Lines without a time range that contain this word are roster titles.
TITLE_KEYWORD = "schema"
ABSENCE_HEADERS = ("afwezig", "afwezigen", "absent", "absences", "absence")

WEEKDAYS = {
    "maandag": 0,
    "monday": 0,
    "dinsdag": 1,
    "tuesday": 1,
    "woensdag": 2,
    "wednesday": 2,
    "donderdag": 3,
    "thursday": 3,
    "vrijdag": 4,
    "friday": 4,
    "zaterdag": 5,
    "saturday": 5,
    "zondag": 6,
    "sunday": 6,
}

PLACEHOLDER_SOURCE = "schedule_import"
PLACEHOLDER_PROJECT_STATUS = "planning"
WORKER_ROLE = "worker"
