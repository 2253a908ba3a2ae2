"""
Background expiry sweep.

The buyer's countdown only *requests* cancellation; this loop is what
guarantees that an abandoned PENDING_PAYMENT order is cancelled even when no
browser tab is left open. It runs inside the API process (started from the
FastAPI lifespan) and the same pass is available as
scripts/sweep_expired_orders.py for cron.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from domain.errors import OrderSystemError
from domain.order import Order
from services.order_service import expire_overdue_orders

logger = logging.getLogger(__name__)


async def run_expiry_sweeper(
    interval_seconds: float,
    stop_event: asyncio.Event,
    sweep: Callable[[], List[Order]] = expire_overdue_orders,
) -> None:
    """
    Call `sweep` every `interval_seconds` until `stop_event` is set.

    The sweep itself is blocking (supabase-py is synchronous), so it runs in a
    worker thread. A failed pass is logged and retried on the next tick.
    """

    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be positive")

    logger.info("Expiry sweeper started", extra={"interval_seconds": interval_seconds})
    while not stop_event.is_set():
        try:
            cancelled = await asyncio.to_thread(sweep)
            if cancelled:
                logger.info("Expiry sweep cancelled orders", extra={"cancelled": len(cancelled)})
        except OrderSystemError as e:
            logger.error("Expiry sweep failed, retrying next tick", extra={"error": str(e)})
        except Exception:
            logger.exception("Unexpected error in expiry sweep, retrying next tick")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue

    logger.info("Expiry sweeper stopped")


def start_expiry_sweeper(interval_seconds: float) -> Optional[tuple[asyncio.Task, asyncio.Event]]:
    """Schedule the sweeper on the running loop; returns None when disabled (interval 0)."""

    if interval_seconds <= 0:
        logger.info("Expiry sweeper disabled")
        return None

    stop_event = asyncio.Event()
    task = asyncio.create_task(run_expiry_sweeper(interval_seconds, stop_event), name="expiry-sweeper")
    return task, stop_event


__all__ = ["run_expiry_sweeper", "start_expiry_sweeper"]
