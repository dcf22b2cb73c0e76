# src/cratewatch/telemetry/logger/processors.py

"""
Custom structlog processors used by the cratewatch logging pipeline.
"""

from structlog.typing import EventDict, WrappedLogger

LEVEL_EMOJIS = {
    "debug": "🐛",
    "info": "ℹ️",
    "warning": "⚠️",
    "error": "❌",
    "critical": "💥",
}

# Picked from the first segment of the logger name
AREA_EMOJIS = {
    "model": "🌳",
    "discovery": "🔎",
    "testing": "🧪",
    "runtime": "⚙️",
    "collaborators": "🔌",
    "cli": "⌨️",
    "config": "📄",
}

# Rendering-only keys, never written to the log output
_EXTRA_KEYS = ("emoji_override",)


def add_emoji_processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Prefixes the event with an area emoji, or a level emoji for warnings and errors."""
    level = str(event_dict.get("level", method_name)).lower()
    emoji = event_dict.get("emoji_override")
    if not emoji:
        area = str(event_dict.get("logger", "")).split(".", 1)[0]
        if level in ("warning", "error", "critical") or area not in AREA_EMOJIS:
            emoji = LEVEL_EMOJIS.get(level, "➡️")
        else:
            emoji = AREA_EMOJIS[area]

    event = event_dict.get("event")
    if isinstance(event, str):
        event_dict["event"] = f"{emoji} {event}"
    return event_dict


def remove_extra_keys_processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Drops rendering-only keys before the final renderer runs."""
    for key in _EXTRA_KEYS:
        event_dict.pop(key, None)
    return event_dict
