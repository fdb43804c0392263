"""
Secret handling for the sidecar: the environment-key allowlist and the
live probes that check a credential before the client stores it.
"""

from .keys import ALLOWED_ENV_KEYS, RELAY_URL_KEYS, is_allowed_key
from .probe import SecretProbe, SecretProbeResult

__all__ = [
    "ALLOWED_ENV_KEYS",
    "RELAY_URL_KEYS",
    "SecretProbe",
    "SecretProbeResult",
    "is_allowed_key",
]
