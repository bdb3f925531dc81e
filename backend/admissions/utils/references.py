"""
Payment reference generation.
"""
import secrets
import string
import time

_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference(prefix: str = "PAY") -> str:
    """Local placeholder reference: PAY-<epoch millis>-<9 random chars>.

    Superseded by the gateway-issued reference once a checkout session exists.
    """
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"
