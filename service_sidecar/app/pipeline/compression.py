"""
Accept-Encoding negotiation and body compression.
"""

import gzip
from typing import Dict, Optional

import brotli

MIN_COMPRESS_BYTES = 1024

# Preference order when the client weighs encodings equally.
SUPPORTED_ENCODINGS = ("br", "gzip")


def parse_accept_encoding(header: Optional[str]) -> Dict[str, float]:
    """Map each coding named in ``header`` to its q-value."""
    weights: Dict[str, float] = {}
    if not header:
        return weights

    for item in header.split(","):
        parts = [part.strip() for part in item.split(";")]
        coding = parts[0].lower()
        if not coding:
            continue
        quality = 1.0
        for param in parts[1:]:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        weights[coding] = quality
    return weights


def negotiate_encoding(header: Optional[str]) -> Optional[str]:
    """Pick the best supported encoding, or None for identity."""
    weights = parse_accept_encoding(header)
    wildcard = weights.get("*", 0.0)

    best: Optional[str] = None
    best_quality = 0.0
    for coding in SUPPORTED_ENCODINGS:
        quality = weights.get(coding, wildcard)
        if quality > best_quality:
            best, best_quality = coding, quality
    return best


def compress(body: bytes, encoding: str) -> bytes:
    if encoding == "br":
        return brotli.compress(body)
    if encoding == "gzip":
        return gzip.compress(body)
    raise ValueError(f"unsupported encoding: {encoding}")
