import pytz

# ---------------------------------------------------------
# Time zone
# ---------------------------------------------------------
LOCAL_TIMEZONE = "Europe/Helsinki"
TZ_LOCAL = pytz.timezone(LOCAL_TIMEZONE)

# ---------------------------------------------------------
# spot-hinta.fi
# ---------------------------------------------------------
SPOT_BASE_URL = "https://api.spot-hinta.fi"
CACHE_SECONDS = 60
SPOT_ENDPOINTS = {
    "today": "/Today",
    "dayForward": "/DayForward",
    "todayAndDayForward": "/TodayAndDayForward",
    "justNow": "/JustNow",
}
SPOT_TYPE_ALIASES = {
    "today": "today",
    "dayforward": "dayForward",
    "day-forward": "dayForward",
    "tomorrow": "dayForward",
    "todayanddayforward": "todayAndDayForward",
    "today-dayforward": "todayAndDayForward",
    "today-and-dayforward": "todayAndDayForward",
    "justnow": "justNow",
    "just-now": "justNow",
    "now": "justNow",
}
PRICE_RESOLUTIONS = (15, 60)
LOOK_FORWARD_HOURS = (1, 6)

# ---------------------------------------------------------
# Page options
# ---------------------------------------------------------
DEFAULT_REGION = "FI"
REGION_OPTIONS = [
    "FI", "SE1", "SE2", "SE3", "SE4",
    "NO1", "NO2", "NO3", "NO4", "NO5",
    "DK1", "DK2", "EE", "LT", "LV",
]
RESOLUTION_OPTIONS = {
    "Tunti": "60",
    "Varttitunti": "15",
}
TAX_OPTIONS = {
    "ALV": True,
    "Ei ALV:ia": False,
}
UNIT = "c/kWh"
VALUE_MULTIPLIER = 100      # EUR/kWh -> c/kWh
DEFAULT_CHART_WIDTH = 1000

# ---------------------------------------------------------
# Chart
# ---------------------------------------------------------
PRICE_COLORS = {
    "low": "#16a34a",
    "mid": "#f59e0b",
    "high": "#ef4444",
}
LOW_HOURS = 6
MID_HOURS = 12
DEFAULT_STEP_MINUTES = 60
TICK_EVERY_HOURS = 2
BAR_PADDING_PX = 16
BAR_FILL_RATIO = 0.92
PAST_OPACITY = 0.45
DAY_LINE_COLOR = "#9ca3af"
NOW_LINE_COLOR = "#94a3b8"
NOW_LABEL = "NOW"

WEEKDAYS_LONG = ("maanantai", "tiistai", "keskiviikko", "torstai", "perjantai", "lauantai", "sunnuntai")
WEEKDAYS_SHORT = ("ma", "ti", "ke", "to", "pe", "la", "su")
