import os
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

def get_env_var(name: str) -> str:
    """Get environment variable or raise a clear error if missing."""
    value = os.getenv(name)
    if not value:
        raise RuntimeError(
            f"❌ Missing required environment variable: {name}\n"
            f"👉 Did you copy .env.example to .env and fill in your keys?"
        )
    return value

# Optional vars (with defaults)
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
PORT = int(os.getenv("PORT", "8000"))

# LLM used for (re)generating resolution flows. The key itself is read lazily
# through get_env_var("GOOGLE_API_KEY") when the agent is first built.
GEMINI_MODEL_NAME = os.getenv("GEMINI_MODEL_NAME", "gemini-1.5-flash")

# Streaming reasoning service that emits phase events for a chat turn
REASONING_SERVICE_URL = os.getenv("REASONING_SERVICE_URL", "")
REASONING_SERVICE_KEY = os.getenv("REASONING_SERVICE_KEY", "")

# Timeouts (seconds)
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "120"))
TURN_TIMEOUT_SECONDS = float(os.getenv("TURN_TIMEOUT_SECONDS", "120"))

# Clarification cards
MCQ_EXPIRY_SECONDS = int(os.getenv("MCQ_EXPIRY_SECONDS", "120"))
MAX_MCQ_CHAIN = int(os.getenv("MAX_MCQ_CHAIN", "2"))

# Chat sessions kept in memory by the API
MAX_CONVERSATIONS = int(os.getenv("MAX_CONVERSATIONS", "500"))

# Intent matching
FAST_PATH_CONFIDENCE = float(os.getenv("FAST_PATH_CONFIDENCE", "0.85"))

# Optional JSON file with {"intents": [...], "tools": [...], "fixtures": {...}}
# used by the API for the local fast path and dry runs
SEED_DATA_PATH = os.getenv("SEED_DATA_PATH", "")
