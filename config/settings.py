# config/settings.py
#
#   loading environment variables such as API keys from .env
#   credentials are checked by the clients that need them, not here

import os
from dotenv import load_dotenv

load_dotenv()  # loads .env into environment


def _int_env(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {value!r}")


# weather providers
OPENWEATHER_API_KEY = os.getenv("OPENWEATHER_API_KEY")
TOMORROW_IO_API_KEY = os.getenv("TOMORROW_IO_API_KEY")

# airport directory (runway headings)
AIRPORTDB_API_KEY = os.getenv("AIRPORTDB_API_KEY")

# generative assistant (OpenAI-compatible chat completions)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")

# e-mail notifications
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Flight Schedule <noreply@flightguard.local>")
APP_URL = os.getenv("APP_URL", "http://localhost:3000")

# storage
DB_PATH = os.getenv("DB_PATH", "flightguard.db")

# runtime behaviour
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "America/Chicago")
HTTP_TIMEOUT_SECONDS = _int_env("HTTP_TIMEOUT_SECONDS", 5)
WEATHER_CACHE_TTL_MINUTES = _int_env("WEATHER_CACHE_TTL_MINUTES", 30)
SWEEP_HORIZON_HOURS = _int_env("SWEEP_HORIZON_HOURS", 48)
CHECK_ALL_HORIZON_DAYS = _int_env("CHECK_ALL_HORIZON_DAYS", 7)

# what to assume about wind components when the runway heading is unknown:
#   worst_case      - full wind as both crosswind and tailwind
#   total_wind_only - skip component checks, total wind limit still applies
UNKNOWN_RUNWAY_POLICY = os.getenv("UNKNOWN_RUNWAY_POLICY", "worst_case").lower()
