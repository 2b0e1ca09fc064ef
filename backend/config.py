import os
from dotenv import load_dotenv

load_dotenv()


def _csv(name: str, default: str = "") -> list[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


# --- Model provider keys ---
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
CEREBRAS_API_KEY = os.getenv("CEREBRAS_API_KEY", "")

# Fallback order; providers without a key are left out of the chain
PROVIDER_ORDER = _csv("PROVIDER_ORDER", "gemini,groq,cerebras")

# provider -> model id, per tier
MODEL_TIERS = {
    "fast": {
        "gemini": os.getenv("GEMINI_FAST_MODEL", "gemini-2.5-flash-lite"),
        "groq": os.getenv("GROQ_FAST_MODEL", "llama-3.1-8b-instant"),
        "cerebras": os.getenv("CEREBRAS_FAST_MODEL", "llama3.1-8b"),
    },
    "standard": {
        "gemini": os.getenv("GEMINI_STANDARD_MODEL", "gemini-2.5-flash"),
        "groq": os.getenv("GROQ_STANDARD_MODEL", "llama-3.3-70b-versatile"),
        "cerebras": os.getenv("CEREBRAS_STANDARD_MODEL", "llama3.1-70b"),
    },
}

PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30"))
CLASSIFIER_TIMEOUT_SECONDS = float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "2"))

# --- Chat pipeline ---
MAX_INPUT_LENGTH = int(os.getenv("MAX_INPUT_LENGTH", "2000"))
MAX_HISTORY_ITEM_LENGTH = int(os.getenv("MAX_HISTORY_ITEM_LENGTH", "800"))
HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "12"))
MAX_TOOL_ITERATIONS = int(os.getenv("MAX_TOOL_ITERATIONS", "5"))

# --- Risk engine ---
# Weights and thresholds are hand-tuned and provisional until validated
# against real outcomes. Every value can be overridden from the environment.
RISK_WEIGHTS = {
    "multiple_relapses": float(os.getenv("RISK_WEIGHT_MULTIPLE_RELAPSES", "0.5")),
    "recent_relapse": float(os.getenv("RISK_WEIGHT_RECENT_RELAPSE", "0.35")),
    "high_urges": float(os.getenv("RISK_WEIGHT_HIGH_URGES", "0.5")),
    "moderate_urges": float(os.getenv("RISK_WEIGHT_MODERATE_URGES", "0.25")),
    "declining_mood": float(os.getenv("RISK_WEIGHT_DECLINING_MOOD", "0.4")),
    "high_stress": float(os.getenv("RISK_WEIGHT_HIGH_STRESS", "0.4")),
    "missed_check_ins": float(os.getenv("RISK_WEIGHT_MISSED_CHECK_INS", "0.3")),
    "chat_inactivity": float(os.getenv("RISK_WEIGHT_CHAT_INACTIVITY", "0.25")),
    "poor_sleep": float(os.getenv("RISK_WEIGHT_POOR_SLEEP", "0.3")),
    "journal_sentiment_decline": float(os.getenv("RISK_WEIGHT_JOURNAL_SENTIMENT", "0.25")),
    "journal_inactivity": float(os.getenv("RISK_WEIGHT_JOURNAL_INACTIVITY", "0.2")),
    "milestone_approaching": float(os.getenv("RISK_WEIGHT_MILESTONE", "0.15")),
}
RISK_THRESHOLD = float(os.getenv("RISK_THRESHOLD", "0.4"))
CRITICAL_RISK_SCORE = float(os.getenv("CRITICAL_RISK_SCORE", "0.7"))

ACTIVITY_LOOKBACK_HOURS = int(os.getenv("ACTIVITY_LOOKBACK_HOURS", "48"))
INACTIVITY_LOOKBACK_HOURS = int(os.getenv("INACTIVITY_LOOKBACK_HOURS", "72"))
MOOD_LOOKBACK_DAYS = int(os.getenv("MOOD_LOOKBACK_DAYS", "7"))
RELAPSE_LOOKBACK_DAYS = int(os.getenv("RELAPSE_LOOKBACK_DAYS", "30"))
RELAPSE_HISTORY_DAYS = int(os.getenv("RELAPSE_HISTORY_DAYS", "90"))

MOOD_WINDOW = int(os.getenv("MOOD_WINDOW", "3"))
DECLINING_MOOD_MAX_AVG = float(os.getenv("DECLINING_MOOD_MAX_AVG", "2"))
HIGH_URGE_MIN_AVG = float(os.getenv("HIGH_URGE_MIN_AVG", "7"))
MODERATE_URGE_MIN_AVG = float(os.getenv("MODERATE_URGE_MIN_AVG", "5"))
HIGH_STRESS_MIN_AVG = float(os.getenv("HIGH_STRESS_MIN_AVG", "8"))
POOR_SLEEP_MAX_AVG = float(os.getenv("POOR_SLEEP_MAX_AVG", "5"))
MILESTONE_DAYS = [int(d) for d in _csv("MILESTONE_DAYS", "7,14,30,60,90,180,365")]

# --- Intervention lifecycle ---
INTERVENTION_TIMEOUT_HOURS = int(os.getenv("INTERVENTION_TIMEOUT_HOURS", "24"))
FREQUENCY_COOLDOWN_HOURS = {
    "low": 24,
    "medium": 6,
    "high": 0,
}

# --- Notification handoff ---
PUSH_DISPATCH_URL = os.getenv("PUSH_DISPATCH_URL", "")
PUSH_DISPATCH_TOKEN = os.getenv("PUSH_DISPATCH_TOKEN", "")
CRON_SECRET = os.getenv("CRON_SECRET", "")

# --- JWT Configuration ---
JWT_SECRET = os.getenv("JWT_SECRET", "change-this-secret-key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = int(os.getenv("JWT_EXPIRY_HOURS", "24"))

# --- Database ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/coach.db")

# Fix for common SQLAlchemy issues with postgres:// vs postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# --- Assistant ---
ASSISTANT_NAME = os.getenv("ASSISTANT_NAME", "Recovery Coach")
