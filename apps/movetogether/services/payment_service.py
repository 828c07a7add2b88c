"""
Payment receipt verification against RevenueCat.

Only one-time (non-subscription) purchases are checked. A purchase matches
when its id or store transaction id equals the supplied transaction id, or,
as a fallback, when any purchase of the product happened within the recency
window. The fallback does not bind a receipt to a single leave request.
"""

import os
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv

from movetogether.utils.datetime_utils import utcnow
import logging

load_dotenv()

logger = logging.getLogger(__name__)

REVENUECAT_API_KEY = os.getenv("REVENUECAT_API_KEY", "")
REVENUECAT_API_URL = os.getenv("REVENUECAT_API_URL", "https://api.revenuecat.com/v1")
PAYMENT_VERIFICATION_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_VERIFICATION_TIMEOUT_SECONDS", "5"))
# 0 disables the recency fallback (exact transaction match only)
PAYMENT_RECENCY_WINDOW_SECONDS = int(os.getenv("PAYMENT_RECENCY_WINDOW_SECONDS", "300"))


class PaymentVerification:
    """Outcome of a receipt check."""

    def __init__(self, valid: bool, error: Optional[str] = None, retryable: bool = False):
        self.valid = valid
        self.error = error
        self.retryable = retryable

    def __repr__(self) -> str:
        return f"PaymentVerification(valid={self.valid}, error={self.error!r}, retryable={self.retryable})"


def _parse_purchase_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def match_purchase(
    purchases: Any,
    transaction_id: str,
    now: Optional[datetime] = None,
    recency_window_seconds: int = PAYMENT_RECENCY_WINDOW_SECONDS,
) -> bool:
    """
    Whether any purchase in a RevenueCat non_subscriptions list matches.

    Args:
        purchases: List of purchase dicts for the product
        transaction_id: Transaction ID supplied by the client
        now: Reference time for the recency window
        recency_window_seconds: Fallback window; 0 disables it
    """
    if not isinstance(purchases, list) or not purchases:
        return False

    for purchase in purchases:
        if not isinstance(purchase, dict):
            continue
        if transaction_id and transaction_id in (
            purchase.get("id"),
            purchase.get("store_transaction_id"),
        ):
            return True

    if recency_window_seconds <= 0:
        return False

    cutoff = (now or utcnow()) - timedelta(seconds=recency_window_seconds)
    for purchase in purchases:
        if not isinstance(purchase, dict):
            continue
        purchased_at = _parse_purchase_date(purchase.get("purchase_date"))
        if purchased_at is not None and purchased_at.tzinfo is not None and purchased_at > cutoff:
            return True
    return False


class PaymentVerifier:
    """Verifies one-time purchases through the RevenueCat REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        recency_window_seconds: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = REVENUECAT_API_KEY if api_key is None else api_key
        self.base_url = (base_url or REVENUECAT_API_URL).rstrip("/")
        self.timeout = PAYMENT_VERIFICATION_TIMEOUT_SECONDS if timeout is None else timeout
        self.recency_window_seconds = (
            PAYMENT_RECENCY_WINDOW_SECONDS if recency_window_seconds is None else recency_window_seconds
        )
        self._transport = transport

    async def verify_purchase(
        self, user_id: str, transaction_id: str, product_id: str
    ) -> PaymentVerification:
        """
        Check that ``user_id`` bought ``product_id`` with this transaction.

        Never raises: network failures come back as a retryable invalid result.
        """
        if not self.api_key:
            logger.error("REVENUECAT_API_KEY not configured")
            return PaymentVerification(False, "Payment verification not configured")

        url = f"{self.base_url}/subscribers/{user_id}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Payment verification request failed for user {user_id}: {e}")
            return PaymentVerification(
                False, "Could not reach payment verification. Please try again.", retryable=True
            )

        if response.status_code >= 500:
            logger.warning(f"RevenueCat returned {response.status_code} for user {user_id}")
            return PaymentVerification(
                False, "Payment verification unavailable. Please try again.", retryable=True
            )
        if response.status_code != 200:
            logger.warning(f"RevenueCat returned {response.status_code} for user {user_id}")
            return PaymentVerification(False, "Failed to verify payment")

        try:
            body = response.json()
        except ValueError:
            logger.warning(f"RevenueCat returned a non-JSON body for user {user_id}")
            return PaymentVerification(False, "Failed to verify payment")

        purchases = ((body.get("subscriber") or {}).get("non_subscriptions") or {}).get(product_id)
        if not purchases:
            return PaymentVerification(False, "No purchase found for this product")

        if match_purchase(purchases, transaction_id, recency_window_seconds=self.recency_window_seconds):
            logger.info(f"Verified {product_id} purchase for user {user_id}")
            return PaymentVerification(True)

        return PaymentVerification(False, "Transaction not found or expired")


# Global verifier instance
_verifier: Optional[PaymentVerifier] = None


def get_payment_verifier() -> PaymentVerifier:
    """Get the global payment verifier instance."""
    global _verifier
    if _verifier is None:
        _verifier = PaymentVerifier()
    return _verifier
