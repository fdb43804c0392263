"""
Environment keys the client may set or validate through the sidecar.
"""

from typing import FrozenSet

PROVIDER_KEYS: FrozenSet[str] = frozenset({
    "GROQ_API_KEY",
    "OPENROUTER_API_KEY",
    "FRED_API_KEY",
    "EIA_API_KEY",
    "CLOUDFLARE_API_TOKEN",
    "ACLED_ACCESS_TOKEN",
    "WINGBITS_API_KEY",
    "OPENSKY_CLIENT_ID",
    "OPENSKY_CLIENT_SECRET",
    "AISSTREAM_API_KEY",
})

RELAY_URL_KEYS: FrozenSet[str] = frozenset({
    "WS_RELAY_URL",
    "VITE_WS_RELAY_URL",
    "VITE_OPENSKY_RELAY_URL",
})

LOCAL_MODEL_KEYS: FrozenSet[str] = frozenset({
    "OLLAMA_API_URL",
    "OLLAMA_MODEL",
})

ALLOWED_ENV_KEYS: FrozenSet[str] = PROVIDER_KEYS | RELAY_URL_KEYS | LOCAL_MODEL_KEYS


def is_allowed_key(key: str) -> bool:
    return key in ALLOWED_ENV_KEYS
