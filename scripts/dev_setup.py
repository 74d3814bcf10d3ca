"""Prepare a local Kalligram checkout: write ``.env`` and create the database tables.

Run ``python scripts/dev_setup.py --deepseek-api-key sk-...`` once after cloning.
Values already present in ``.env`` are kept unless a flag overrides them.
"""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, load_dotenv, set_key

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

DEFAULT_ENV_PATH = REPO_ROOT / ".env"

# (flag, environment variable, help text)
OPTIONAL_SETTINGS = (
    ("--secret-key", "SECRET_KEY", "Flask session secret; the existing value is kept when omitted."),
    ("--deepseek-api-key", "DEEPSEEK_API_KEY", "DeepSeek key used by the writing assistant."),
    ("--hf-api-key", "HF_API_KEY", "Hugging Face inference key."),
    ("--supabase-url", "SUPABASE_URL", "Public Supabase URL returned by /api/get-env."),
    ("--supabase-anon-key", "SUPABASE_ANON_KEY", "Public Supabase anon key returned by /api/get-env."),
    ("--database-url", "DATABASE_URL", "SQLAlchemy connection string; SQLite under instance/ by default."),
)
MASKED = {"SECRET_KEY", "DEEPSEEK_API_KEY", "HF_API_KEY"}


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Configure .env and initialise the Kalligram database.")
    parser.add_argument("--flask-app", default="wsgi.py", help="FLASK_APP entry point (default: wsgi.py)")
    parser.add_argument("--flask-env", default="development", help="FLASK_ENV value (default: development)")
    for flag, _, help_text in OPTIONAL_SETTINGS:
        parser.add_argument(flag, help=help_text)
    parser.add_argument("--env-path", type=Path, default=DEFAULT_ENV_PATH, help="Location of the .env file.")
    parser.add_argument("--skip-db", action="store_true", help="Write .env only and leave the database alone.")
    return parser.parse_args(argv)


def collect_updates(args: argparse.Namespace) -> Dict[str, str]:
    updates = {"FLASK_APP": args.flask_app, "FLASK_ENV": args.flask_env}
    for flag, key, _ in OPTIONAL_SETTINGS:
        value = getattr(args, flag.lstrip("-").replace("-", "_"))
        if value:
            updates[key] = value
    return updates


def write_env_file(env_path: Path, updates: Dict[str, str]) -> Dict[str, str]:
    if env_path.exists():
        backup = env_path.with_name(env_path.name + ".bak")
        shutil.copy(env_path, backup)
        print(f"Backed up {env_path.name} to {backup.name}.")
    else:
        env_path.touch()

    for key, value in updates.items():
        set_key(str(env_path), key, value, quote_mode="never")
    print(f"Wrote {len(updates)} setting(s) to {env_path}.")
    return {key: value or "" for key, value in dotenv_values(env_path).items()}


def initialize_database(env_path: Path) -> None:
    # Config reads os.environ at import time.
    load_dotenv(env_path, override=True)
    from kalligram import create_app
    from kalligram.extensions import db

    app = create_app()
    with app.app_context():
        db.create_all()
    print(f"Database ready at {app.config['SQLALCHEMY_DATABASE_URI']}.")


def _display(key: str, value: str) -> str:
    if key not in MASKED or not value:
        return value
    return value[:4] + "..." if len(value) > 8 else "***"


def main(argv: Optional[list] = None) -> None:
    args = parse_args(argv)
    env_values = write_env_file(args.env_path, collect_updates(args))

    if args.skip_db:
        print("Skipping database initialisation.")
    else:
        initialize_database(args.env_path)

    print("\nCurrent settings:")
    for key in sorted(env_values):
        print(f"  {key}={_display(key, env_values[key])}")


if __name__ == "__main__":
    main()
