"""
Post-commit notification dispatch.

Notifications are fire-and-forget: they go out only after the transaction
that produced them committed, and a failing notifier is logged without
touching the committed state.
"""

from __future__ import annotations

from collections.abc import Sequence

from consignment_kernel.domain.effects import SendNotification
from consignment_kernel.logging_config import get_logger
from consignment_services.interfaces import Notifier

logger = get_logger("services.effects")


def dispatch_notifications(notifier: Notifier, notices: Sequence[SendNotification]) -> int:
    """
    Deliver ``notices`` in order.

    Returns:
        Number delivered without error.
    """
    delivered = 0
    for notice in notices:
        try:
            notifier.notify(notice.kind, notice.seller_id, notice.payload)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={
                    "notification_kind": notice.kind.value,
                    "seller_id": str(notice.seller_id),
                },
                exc_info=True,
            )
            continue
        delivered += 1
    if notices:
        logger.info(
            "notifications_dispatched",
            extra={"requested": len(notices), "delivered": delivered},
        )
    return delivered
