import os, json, yaml
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from dotenv import load_dotenv

ROOT_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "..")

CONFIG_PATH = os.environ.get("JT_CONFIG", os.path.join(ROOT_DIR, "config.yaml"))
STATE_PATH = os.environ.get("JT_STATE", os.path.join(ROOT_DIR, "data", "state.json"))
CREDENTIALS_DIR = os.environ.get("JT_CREDENTIALS", os.path.join(ROOT_DIR, "credentials"))

load_dotenv()

DEFAULT_USER_STATE = {"last_processed": None, "is_active": True}


@dataclass
class Settings:
    app: Dict[str, Any] = field(default_factory=dict)
    gmail: Dict[str, Any] = field(default_factory=dict)
    sheets: Dict[str, Any] = field(default_factory=dict)
    classifier: Dict[str, Any] = field(default_factory=dict)
    gemini_api_key: Optional[str] = None

    @property
    def timezone(self) -> str:
        return self.app.get("timezone", "UTC")

    @property
    def users(self) -> list:
        return list(self.app.get("users") or [])


def load_settings(path: Optional[str] = None) -> Settings:
    path = path or CONFIG_PATH
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    # optional blocks
    for block in ("app", "gmail", "sheets", "classifier"):
        cfg[block] = cfg.get(block) or {}
    known = {k: cfg[k] for k in ("app", "gmail", "sheets", "classifier")}
    return Settings(**known, gemini_api_key=os.environ.get("GEMINI_API_KEY") or None)


def load_state(path: Optional[str] = None) -> dict:
    path = path or STATE_PATH
    if not os.path.exists(path):
        return {"users": {}}
    with open(path, "r", encoding="utf-8") as f:
        state = json.load(f)
    state.setdefault("users", {})
    return state


def save_state(state: dict, path: Optional[str] = None) -> None:
    path = path or STATE_PATH
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(state, f, indent=2)


def user_state(state: dict, user_id: str) -> dict:
    return {**DEFAULT_USER_STATE, **state.get("users", {}).get(user_id, {})}


def last_processed(state: dict, user_id: str) -> Optional[datetime]:
    value = user_state(state, user_id)["last_processed"]
    return datetime.fromisoformat(value) if value else None


def set_last_processed(state: dict, user_id: str, when: datetime) -> None:
    users = state.setdefault("users", {})
    users.setdefault(user_id, dict(DEFAULT_USER_STATE))["last_processed"] = when.isoformat(timespec="seconds")
