"""
Secret management for API keys.

Usage:
    from naijainfo.config.secrets import get_openai_key, has_openai_key

    # Will raise if key is missing
    key = get_openai_key()

Key status is reported by ``python -m naijainfo.ingest.coordinator --check-config``.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Find .env file - walk up from this file to repo root
_repo_root = Path(__file__).resolve().parent.parent.parent  # naijainfo/config/secrets.py -> repo root
_env_path = _repo_root / ".env"

if _env_path.exists():
    load_dotenv(_env_path)
else:
    # Also try current working directory
    load_dotenv()


class MissingAPIKeyError(Exception):
    """Raised when a required API key is not configured."""
    pass


def get_openai_key() -> str:
    """
    Get OpenAI API key from environment.

    Returns:
        str: The API key

    Raises:
        MissingAPIKeyError: If OPENAI_API_KEY is not set
    """
    key = os.environ.get("OPENAI_API_KEY", "").strip()
    if not key:
        raise MissingAPIKeyError(
            "OPENAI_API_KEY not found. "
            "Copy .env.example to .env and add your key."
        )
    return key


def has_openai_key() -> bool:
    """Capability check for the model classifier tier."""
    return bool(os.environ.get("OPENAI_API_KEY", "").strip())


def check_keys() -> dict:
    """
    Check which API keys are configured.

    Returns:
        dict: Status of each key ("OK" or "MISSING")
    """
    return {"OPENAI_API_KEY": "OK" if has_openai_key() else "MISSING"}

