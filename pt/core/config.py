import json
from datetime import timezone
from dateutil import tz
from pt.common.logger import log
from pt.common.setup import PATHS

#region === Helpers and Paths ===

SETTINGS_PATH = PATHS.current / "settings.json"
STORE_DIR = PATHS.current / "store"

# Default values, and the type each one must have to be accepted from disk.
_SETTINGS_DEFAULTS = {
    "initial_pill_count": 10,
    "default_dose": 1,
    "dose_step": 0.5,
    "display_timezone": "America/New_York",
    "tick_interval_ms": 10,
    "confirm_reset": True,
    "always_on_top": False,
}
_SETTINGS_TYPES = {
    "initial_pill_count": int,
    "default_dose": (int, float),
    "dose_step": (int, float),
    "display_timezone": str,
    "tick_interval_ms": int,
    "confirm_reset": bool,
    "always_on_top": bool,
}
# Numeric settings that only make sense above zero
_POSITIVE = {"initial_pill_count", "default_dose", "dose_step", "tick_interval_ms"}

# Helper to return a truly fresh, default settings dict.
def build_default_settings():
    return dict(_SETTINGS_DEFAULTS)

def _valid(key, value):
    expected = _SETTINGS_TYPES[key]
    # bool is an int subclass, don't let True sneak in as a pill count
    if isinstance(value, bool) and expected is not bool:
        return False
    if not isinstance(value, expected):
        return False
    if key in _POSITIVE and value <= 0:
        return False
    return True

# Turns a zone name into a tzinfo, falling back to UTC when the name is unknown on this machine.
def resolve_timezone(name):
    zone = tz.gettz(name) if isinstance(name, str) and name else None
    if zone is None:
        log.warning(f"Unknown timezone '{name}', falling back to UTC.")
        return timezone.utc
    return zone

#endregion === Helpers and Paths ===

#region === Saving and Loading Settings ===

# Loads settings.json, filling or replacing anything missing or mistyped with defaults.
def load_settings():
    try:
        if not SETTINGS_PATH.exists():
            log.info("No existing settings.json found in `current`, loading default settings.")
            return build_default_settings()

        with open(SETTINGS_PATH, "r", encoding="utf-8") as f:
            loaded = json.load(f)
        if not isinstance(loaded, dict):
            log.warning(f"settings.json at '{SETTINGS_PATH}' is not an object, loading default settings.")
            return build_default_settings()

        settings = {}
        defaulted_values = set()
        for key, default in _SETTINGS_DEFAULTS.items():
            if key in loaded and _valid(key, loaded[key]):
                settings[key] = loaded[key]
            else:
                defaulted_values.add(key)
                settings[key] = default

        if defaulted_values:
            log.warning(f"Loaded settings from '{SETTINGS_PATH}', but with missing or invalid values that were defaulted: {', '.join(sorted(defaulted_values))}")
        else:
            log.info(f"Successfully loaded settings from '{SETTINGS_PATH}'.")
        return settings
    # Fall back to defaults in case of error, but warn in log
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        log.warning("Ran into an error while trying to load settings.json, falling back to default settings.",exc_info=True)
        return build_default_settings()

# Write the given settings to disk under PATHS.current / settings.json
def save_settings(settings):
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    with open(SETTINGS_PATH, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=2)
    log.info(f"Successfully saved settings to '{SETTINGS_PATH}'")

#endregion === Saving and Loading Settings ===
