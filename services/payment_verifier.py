"""
Payment verification against the bank transaction feed.

Decides whether an order's transfer has arrived by reading the most recent
transactions of the receiving account and looking for one whose memo
contains the order code and whose credited amount covers the order total.

Providers (and revisions of the same provider) name things differently, so
each logical field has an ordered list of accepted aliases:
- transaction list: items, transactions, data.transactions
- memo:             content, transaction_content, description
- amount:           amount_in, amount

This runs server-side only: the feed API key never reaches the buyer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import httpx

from config import Settings
from domain.errors import ConfigurationError, ResponseFormatError, UpstreamConnectivityError

logger = logging.getLogger(__name__)

CONTAINER_ALIASES: Tuple[Tuple[str, ...], ...] = (
    ("items",),
    ("transactions",),
    ("data", "transactions"),
)
MEMO_ALIASES: Tuple[str, ...] = ("content", "transaction_content", "description")
AMOUNT_ALIASES: Tuple[str, ...] = ("amount_in", "amount")

PAYMENT_NOT_FOUND: str = "PAYMENT_NOT_FOUND"
PAYMENT_MATCHED: str = "PAYMENT_MATCHED"


@dataclass(frozen=True, slots=True)
class FeedTransaction:
    """The two fields of a bank transaction that matter for matching."""

    memo: str
    amount: Decimal
    raw: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """
    Outcome of one verification attempt.

    matched=False is the normal "not arrived yet" answer; the buyer may
    retry after a short wait because the feed lags real transfers.
    """

    matched: bool
    reason: str
    message: str
    transaction: Optional[FeedTransaction] = None


def _first_present(entry: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    for alias in aliases:
        value = entry.get(alias)
        if value is not None and value != "":
            return value
    return None


def extract_transaction_list(payload: Any) -> List[Mapping[str, Any]]:
    """
    Locate the transaction list in a feed response.

    Raises:
        ResponseFormatError: no alias resolves to a list
    """

    if not isinstance(payload, Mapping):
        raise ResponseFormatError(f"Expected a JSON object from the payment feed, got {type(payload).__name__}")

    for path in CONTAINER_ALIASES:
        node: Any = payload
        for key in path:
            node = node.get(key) if isinstance(node, Mapping) else None
        if node is None:
            continue
        if not isinstance(node, list):
            raise ResponseFormatError(f"Payment feed field '{'.'.join(path)}' is not a list")
        return [entry for entry in node if isinstance(entry, Mapping)]

    raise ResponseFormatError(
        "Payment feed response has no transaction list "
        f"(looked for: {', '.join('.'.join(path) for path in CONTAINER_ALIASES)})"
    )


def parse_transaction(entry: Mapping[str, Any]) -> Optional[FeedTransaction]:
    """Normalize one feed entry; entries without a usable amount are skipped."""

    memo = _first_present(entry, MEMO_ALIASES)
    raw_amount = _first_present(entry, AMOUNT_ALIASES)

    if raw_amount is None:
        return None
    try:
        amount = Decimal(str(raw_amount).replace(",", ""))
    except InvalidOperation:
        logger.warning("Skipping feed transaction with unparseable amount", extra={"amount": str(raw_amount)[:50]})
        return None

    return FeedTransaction(memo=str(memo or ""), amount=amount, raw=entry)


def find_matching_transaction(
    transactions: Sequence[FeedTransaction],
    order_code: str,
    expected_amount: Decimal,
) -> Optional[FeedTransaction]:
    """
    First transaction whose memo contains `order_code` (case-insensitive)
    and whose amount is at least `expected_amount`. Overpayment counts.
    """

    needle = order_code.strip().upper()
    if not needle:
        raise ValueError("order_code must not be empty")

    for tx in transactions:
        if needle in tx.memo.upper() and tx.amount >= expected_amount:
            return tx
    return None


def _upstream_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, Mapping) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


def fetch_transactions(settings: Settings, http_client: Optional[httpx.Client] = None) -> List[FeedTransaction]:
    """
    Fetch the most recent `payment_feed_limit` transactions for the receiving account.

    Raises:
        ConfigurationError: API key or account number not configured
        UpstreamConnectivityError: network failure or non-2xx response
        ResponseFormatError: body is not JSON or holds no transaction list
    """

    if not settings.payment_feed_api_key:
        raise ConfigurationError("Missing PAYMENT_FEED_API_KEY: the payment feed credential is not configured.")
    if not settings.bank_account_number:
        raise ConfigurationError("Missing BANK_ACCOUNT_NUMBER: the receiving bank account is not configured.")

    params = {"account_number": settings.bank_account_number, "limit": settings.payment_feed_limit}
    headers = {
        "Authorization": f"Bearer {settings.payment_feed_api_key}",
        "Content-Type": "application/json",
    }

    owns_client = http_client is None
    client = http_client or httpx.Client(timeout=httpx.Timeout(settings.payment_feed_timeout_seconds))
    try:
        response = client.get(settings.payment_feed_url, params=params, headers=headers)
    except httpx.RequestError as e:
        logger.error("Payment feed request failed", extra={"error": str(e)})
        raise UpstreamConnectivityError(str(e) or type(e).__name__) from e
    finally:
        if owns_client:
            client.close()

    if not response.is_success:
        detail = _upstream_message(response)
        logger.error(
            "Payment feed returned an error status",
            extra={"status_code": response.status_code, "detail": detail},
        )
        raise UpstreamConnectivityError(detail, status_code=response.status_code)

    try:
        payload = response.json()
    except ValueError as e:
        logger.error("Payment feed returned a non-JSON body", extra={"body": response.text[:200]})
        raise ResponseFormatError("Payment feed returned a non-JSON body") from e

    try:
        entries = extract_transaction_list(payload)
    except ResponseFormatError:
        # Kept apart from "not found" so upstream breaking changes are visible.
        logger.error(
            "Unexpected payment feed response format",
            extra={"top_level_keys": sorted(payload) if isinstance(payload, Mapping) else None},
        )
        raise

    return [tx for tx in (parse_transaction(entry) for entry in entries) if tx is not None]


def verify_payment(
    order_code: str,
    expected_amount: Decimal,
    *,
    settings: Settings,
    http_client: Optional[httpx.Client] = None,
) -> VerificationResult:
    """
    Check the feed for a transfer carrying `order_code` of at least `expected_amount`.

    Example:
        result = verify_payment("MMO-AB12CD", Decimal("25000"), settings=get_settings())
        if not result.matched:
            print(result.message)  # ask the buyer to retry in a minute or two
    """

    transactions = fetch_transactions(settings, http_client)
    found = find_matching_transaction(transactions, order_code, expected_amount)

    if found is not None:
        logger.info(
            "Payment matched",
            extra={"order_code": order_code, "amount": str(found.amount), "expected_amount": str(expected_amount)},
        )
        return VerificationResult(
            matched=True,
            reason=PAYMENT_MATCHED,
            message="Payment received.",
            transaction=found,
        )

    logger.info(
        "Payment not found in feed window",
        extra={"order_code": order_code, "expected_amount": str(expected_amount), "scanned": len(transactions)},
    )
    return VerificationResult(
        matched=False,
        reason=PAYMENT_NOT_FOUND,
        message=(
            f"No payment for order {order_code} has been recorded yet. "
            "Bank transfers can take 1-3 minutes to appear; please wait and confirm again."
        ),
    )


__all__ = [
    "AMOUNT_ALIASES",
    "CONTAINER_ALIASES",
    "FeedTransaction",
    "MEMO_ALIASES",
    "PAYMENT_MATCHED",
    "PAYMENT_NOT_FOUND",
    "VerificationResult",
    "extract_transaction_list",
    "fetch_transactions",
    "find_matching_transaction",
    "parse_transaction",
    "verify_payment",
]
