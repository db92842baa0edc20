"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    GATEWAY_UNAVAILABLE = 60001
    SIGNATURE_MISMATCH = 60002
    TIMEOUT = 60003


# Provider→internal status mapping (internal: created/authorized/captured/refunded/failed)
PROVIDER_STATUS_TO_INTERNAL = {
    "razorpay": {
        "created": "created",
        "attempted": "created",
        "authorized": "authorized",
        "captured": "captured",
        "refunded": "refunded",
        "failed": "failed",
        "paid": "captured",
    },
}
