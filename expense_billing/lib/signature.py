"""
Stripe webhook signature verification.

Header format: t=<unix timestamp>,v1=<hex hmac-sha256>[,...]
Signed payload: "{timestamp}.{raw body}", keyed by the endpoint secret.

Pure functions - no I/O, no state. The caller decides what to do with
a failed result.
"""

import hashlib
import hmac
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union


SIGNATURE_TOLERANCE_SECONDS = 300


class VerificationErrorCode(str, Enum):
    MISSING_PARTS = "missing_parts"
    TIMESTAMP_EXPIRED = "timestamp_expired"
    INVALID_SIGNATURE = "invalid_signature"
    CRYPTO_ERROR = "crypto_error"


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    error_code: Optional[VerificationErrorCode] = None
    error_message: Optional[str] = None


VALID = VerificationResult(valid=True)


def _failure(code: VerificationErrorCode, message: str) -> VerificationResult:
    return VerificationResult(valid=False, error_code=code, error_message=message)


def parse_signature_header(header: str) -> Tuple[Optional[int], List[str]]:
    """
    Split the header into its timestamp and v1 signatures.

    Unknown components (v0=, future schemes) are ignored.
    Returns (None, []) pieces when the components are absent.
    """
    timestamp = None
    signatures = []

    for part in header.split(","):
        part = part.strip()
        if part.startswith("t=") and timestamp is None:
            value = part[2:]
            # Plain ASCII digits only, int() also takes "+1", "1_0" and non-Latin digits
            if not (value.isascii() and value.isdigit()):
                return None, signatures
            timestamp = int(value)
        elif part.startswith("v1=") and len(part) > 3:
            signatures.append(part[3:])

    return timestamp, signatures


def compute_signature(payload: Union[bytes, str], timestamp: int, secret: str) -> str:
    """Hex HMAC-SHA256 of "{timestamp}.{payload}"."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def _signatures_match(expected: str, supplied: str) -> bool:
    if len(expected) != len(supplied):
        return False
    return hmac.compare_digest(expected.encode("ascii"), supplied.encode("ascii", "replace"))


def verify_signature(
    payload: Union[bytes, str],
    header: str,
    secret: str,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> VerificationResult:
    """
    Verify a webhook payload against its signature header.

    Args:
        payload: Raw request body, exactly as received
        header: Value of the stripe-signature header
        secret: Endpoint signing secret (whsec_...)
        tolerance: Maximum distance in seconds between timestamp and now
        now: Current Unix time (defaults to time.time())

    Returns:
        VerificationResult - valid, or the reason it is not
    """
    timestamp, signatures = parse_signature_header(header or "")
    if timestamp is None or not signatures:
        return _failure(
            VerificationErrorCode.MISSING_PARTS,
            "Missing timestamp or signature in header",
        )

    current = int(now if now is not None else time.time())
    age = abs(current - timestamp)
    if age > tolerance:
        return _failure(
            VerificationErrorCode.TIMESTAMP_EXPIRED,
            f"Timestamp expired: {age}s old (max {tolerance}s)",
        )

    try:
        expected = compute_signature(payload, timestamp, secret)
    except (TypeError, ValueError, AttributeError) as e:
        return _failure(VerificationErrorCode.CRYPTO_ERROR, str(e) or "Unknown crypto error")

    # Evaluate every candidate so timing does not reveal which one matched
    matched = False
    length_ok = False
    for supplied in signatures:
        if len(supplied) == len(expected):
            length_ok = True
        matched |= _signatures_match(expected, supplied)

    if matched:
        return VALID

    if not length_ok:
        return _failure(VerificationErrorCode.INVALID_SIGNATURE, "Signature length mismatch")
    return _failure(VerificationErrorCode.INVALID_SIGNATURE, "Signature verification failed")
