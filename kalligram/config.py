import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'kalligram.db'}"


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_TIME_LIMIT = None
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # API keys stay server side; never add them to CLIENT_ENV_KEYS.
    DEEPSEEK_API_KEY = os.environ.get("DEEPSEEK_API_KEY", "")
    HF_API_KEY = os.environ.get("HF_API_KEY", "")
    DEEPSEEK_API_BASE = os.environ.get("DEEPSEEK_API_BASE", "https://api.deepseek.com")
    HF_API_BASE = os.environ.get("HF_API_BASE", "https://api-inference.huggingface.co/models")
    LOCAL_MODEL_PATH = os.environ.get("LOCAL_MODEL_PATH")

    DEFAULT_MODEL = os.environ.get("DEFAULT_MODEL", "deepseek-chat")
    DEFAULT_TEMPERATURE = 0.9
    DEFAULT_TOP_P = 0.92
    REQUEST_TIMEOUT = 30
    MAX_LENGTH_DEFAULT = 200
    MAX_LENGTH_LIMIT = 1000
    FALLBACK_RESPONSE = "I apologize, but I couldn't generate a response at this time. Please try again later."
    HUGGING_FACE_MODELS = [
        "distilgpt2",
        "gpt2-medium",
        "Qwen/Qwen3-0.6B",
        "google/gemma-2b",
        "meta-llama/Llama-3-8B-Instruct",
        "tiiuae/falcon-7b-instruct",
        "mistralai/Mixtral-8x7B-Instruct-v0.1",
    ]
    DEEPSEEK_MODELS = ["deepseek-chat", "deepseek-reasoner"]

    SUPABASE_URL = os.environ.get("SUPABASE_URL")
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY")
    CLIENT_ENV_KEYS = ("SUPABASE_URL", "SUPABASE_ANON_KEY")

    CONTEXT_PREVIOUS_CHAPTERS = 2
    CONTEXT_CHAPTER_CHAR_LIMIT = 4000


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    DEEPSEEK_API_KEY = "test-deepseek-key"
    HF_API_KEY = "test-hf-key"
    LOCAL_MODEL_PATH = None
    SUPABASE_URL = None
    SUPABASE_ANON_KEY = None
