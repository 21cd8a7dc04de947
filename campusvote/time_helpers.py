# campusvote/time_helpers.py
# Helper functions for timestamps shared by the models and the engine

from datetime import datetime, timezone


def utcnow():
    """Current UTC time as a naive datetime (the database stores naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_unix_seconds(value):
    """Convert a naive-UTC datetime or an ISO-8601 string to unix seconds.

    Chain elections store their start time in whole seconds, so this is the
    natural key used to match a relational election to its chain entry.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def isoformat(value):
    """Serialize a naive-UTC datetime for JSON responses."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace('+00:00', 'Z')
