# utils/ids.py - Public identifiers for stores and review sessions
import secrets


def _random_id(length: int) -> str:
    return secrets.token_urlsafe(length)[:length]


def generate_store_id() -> str:
    return f"store_{_random_id(12)}"


def generate_session_id() -> str:
    return f"sess_{_random_id(12)}"
