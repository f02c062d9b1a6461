import copy
import json
import os
from datetime import datetime
from at.common.logger import log
from at.util.misc import now_iso
from at.common.setup import PATHS


_SCHEMA_VERSION = 1

#region === Helpers and Paths ===

STATE_PATH = PATHS.current / "state.json"
COMPLETED_DIR = PATHS.sessions

# Default values just for the settings section of the state dict.
_SETTINGS_DEFAULTS = {
    "api_base_url": "https://testing.staffly.space",
    "api_token": "",
    "user_id": None,
    "timezone": "Asia/Kolkata",
    "tick_interval_ms": 1000,
    "sync_interval_seconds": 10,
    "board_interval_seconds": 15,
    "rollover_check_seconds": 60,
    "fresh_window_seconds": 300,
    "request_timeout_seconds": 10,
    "require_offline_reason": True,
    "min_offline_reason_length": 10,
}

# Environment variables that win over whatever is saved in state.json.
_ENV_OVERRIDES = {
    "ATTENDANCE_API_URL": "api_base_url",
    "ATTENDANCE_API_TOKEN": "api_token",
}

# Helper to return a truly fresh, default state.
def build_default_state():
    return {
        "meta": {
            "schema_version": _SCHEMA_VERSION,
            "saved_at": now_iso(),
            "is_completed_session": False,
        },
        "settings": dict(_SETTINGS_DEFAULTS),
        "session": None,
        "ledger": None,
    }

# Settings as the running app sees them: saved values with env overrides applied on top. The overrides are never
# written back to disk.
def effective_settings(state):
    settings = dict(_SETTINGS_DEFAULTS)
    settings.update(state.get("settings") or {})
    for env_name, key in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            settings[key] = value
    return settings

#endregion === Helpers and Paths ===

#region === Saving and Loading State ===

# Loads the current state from PATHS.current / state.json, ensuring the schema is valid and handling default fallbacks.
def load_state():
    try:
        if not STATE_PATH.exists():
            log.info("No existing state.json found in `current`, loading fresh state dict.")
            return build_default_state()

        with open(STATE_PATH, "r", encoding="utf-8") as f:
            state = json.load(f)
        defaulted_values = set()

        # Validate the meta dict
        if "meta" not in state or not isinstance(state["meta"], dict):
            defaulted_values.add("meta")
            state["meta"] = {}
        if "schema_version" not in state["meta"] or not isinstance(state["meta"]["schema_version"], int):
            defaulted_values.add("meta.schema_version")
            state["meta"]["schema_version"] = _SCHEMA_VERSION
        if "is_completed_session" not in state["meta"] or not isinstance(state["meta"]["is_completed_session"], bool):
            defaulted_values.add("meta.is_completed_session")
            state["meta"]["is_completed_session"] = False

        # Validate the settings dict, fill in any necessary defaults
        if "settings" not in state or not isinstance(state["settings"],dict):
            defaulted_values.add("settings")
            state["settings"] = dict(_SETTINGS_DEFAULTS)
        else:
            for key, default in _SETTINGS_DEFAULTS.items():
                if key not in state["settings"]:
                    defaulted_values.add(f"settings.{key}")
                    state["settings"][key] = default

        # Session and ledger are either a dict or null, anything else is dropped
        for key in ("session", "ledger"):
            if key not in state:
                defaulted_values.add(key)
                state[key] = None
            elif state[key] is not None and not isinstance(state[key], dict):
                defaulted_values.add(key)
                state[key] = None

        # Log results
        if defaulted_values:
            log.warning(f"Successfully loaded current state dict from '{STATE_PATH}', but with missing values that were defaulted: {', '.join(sorted(defaulted_values))}")
        else:
            log.info(f"Successfully loaded current state dict from '{STATE_PATH}'.")
        return state
    # Fall back to a fresh state dict in case of error, but warn in log
    except (json.JSONDecodeError, OSError, TypeError, AttributeError):
        log.warning("Ran into an error while trying to load state.json, falling back to loading a fresh state dict.",exc_info=True)
        return build_default_state()

# Write the given state to disk under PATHS.current / state.json
def save_state(state):
    state["meta"]["saved_at"] = now_iso()
    STATE_PATH.parent.mkdir(parents=True, exist_ok=True)
    with open(STATE_PATH, "w", encoding="utf-8") as f:
        json.dump(state, f, indent=2)
    log.debug(f"Successfully saved state to '{STATE_PATH}'")

# Saves the given state dict as a completed session, marking it as fully completed, in the PATHS.sessions folder.
def save_completed_session(state, boundary_dt):
    completed = copy.deepcopy(state)
    completed["meta"]["is_completed_session"] = True
    completed["meta"]["saved_at"] = now_iso()
    if completed.get("session") is not None:
        completed["session"]["end"] = boundary_dt.isoformat()

    COMPLETED_DIR.mkdir(parents=True, exist_ok=True)
    ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    final_path = COMPLETED_DIR / f"session_{ts}.json"
    with open(final_path, "w", encoding="utf-8") as f:
        json.dump(completed, f, indent=2)
    log.info(f"Saved completed session to '{final_path}'")
    return str(final_path)

#endregion === Saving and Loading State ===
