"""Default ledger reason texts.

Callers normally pass localized reasons; these templates are used when they
don't, so every ledger entry still names what moved the balance.
"""

from __future__ import annotations

from typing import Any


def get_reason(reason_type: str, **kwargs: Any) -> str:
    """
    Get a formatted ledger reason.

    Args:
        reason_type: Type of reason (key from REASON_TEMPLATES)
        **kwargs: Variables to format into the reason

    Returns:
        Formatted reason string
    """
    template = REASON_TEMPLATES.get(reason_type)
    if template is None:
        return reason_type.replace("_", " ").capitalize()

    try:
        return template.format(**kwargs)
    except KeyError:
        # Missing variables fall back to the bare label
        return reason_type.replace("_", " ").capitalize()


REASON_TEMPLATES = {
    "verified": "Verified {event_type} achievement #{event_id}",
    "rewarded": "Reward for {event_type} achievement #{event_id}",
    "purchased": (
        "Purchased {quantity} x {product_name} (product #{product_id}) "
        "at {unit_price} each, order #{order_number}"
    ),
    "sold": (
        "Sold {quantity} x {product_name} (product #{product_id}) "
        "at {unit_price} each, order #{order_number}"
    ),
    "refund_for": (
        "Refund for {quantity} x {product_name} (product #{product_id}) "
        "at {unit_price} each, order #{order_number}"
    ),
    "deduction_for_refund": (
        "Deduction for refund of {quantity} x {product_name} (product #{product_id}) "
        "at {unit_price} each, order #{order_number}"
    ),
    "order_adjusted": (
        "Adjusted order #{order_number} to {quantity} x {product_name} "
        "(product #{product_id}) at {unit_price} each"
    ),
}
