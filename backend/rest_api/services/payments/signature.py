"""
Webhook signature verification.

The signature is an HMAC-SHA256 of the raw request body keyed with the shared
webhook secret. Senders put it in one of several headers and formats:
    x-signature: ts=1700000000,v1=<hex>
    x-hub-signature-256: sha256=<hex>
    x-signature: <hex>
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Mapping

# Lookup order when several signature headers are present
SIGNATURE_HEADERS: tuple[str, ...] = (
    "x-hub-signature-256",
    "x-hub-signature",
    "x-signature",
    "x-driven-signature",
)


@dataclass(frozen=True)
class SignatureHeader:
    name: str
    raw: str
    digest: str


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def extract_digest(value: str) -> str:
    """
    Pull the hex digest out of a header value.

    "ts=...,v1=<hex>" -> <hex>; "sha256=<hex>" -> <hex>; bare hex unchanged.
    """
    value = value.strip()
    parts: dict[str, str] = {}
    for part in value.split(","):
        if "=" in part:
            key, item = part.split("=", 1)
            parts[key.strip().lower()] = item.strip()
    if "v1" in parts:
        return parts["v1"].lower()
    if "sha256" in parts:
        return parts["sha256"].lower()
    return value.lower()


def find_signature(headers: Mapping[str, str]) -> SignatureHeader | None:
    """First non-empty signature header in lookup order, or None."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in SIGNATURE_HEADERS:
        raw = lowered.get(name)
        if raw and raw.strip():
            return SignatureHeader(name=name, raw=raw, digest=extract_digest(raw))
    return None


def verify_signature(secret: str, body: bytes, digest: str) -> bool:
    """Constant-time comparison of the expected and received digests."""
    expected = compute_signature(secret, body)
    # Header values may carry non-ASCII text, which compare_digest rejects as str
    return hmac.compare_digest(expected.encode(), digest.encode("utf-8", "replace"))


def diagnose_signature(body: bytes, digest: str, candidates: Mapping[str, str]) -> str | None:
    """
    Operator tool: find which configured secret produced this signature.

    candidates maps a label (e.g. the env var name) to a secret. Returns the
    label of the first matching secret, or None. Never used to accept a
    webhook.
    """
    for label, secret in candidates.items():
        if secret and verify_signature(secret, body, digest):
            return label
    return None
