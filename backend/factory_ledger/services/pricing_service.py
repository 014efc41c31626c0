# Overview: Price access resolver; which price offers a role may use in a channel.

"""
A price offer is eligible for (role, channel) when:
- it is active,
- its channel equals the requested channel or is the wildcard ALL,
- its validity window contains "now" (valid_from unset or past, valid_until
  unset or in the future),
- the role is one of its authorized roles.

The resolver never picks a price on the caller's behalf: when several offers
are eligible for one product, every sale line must name its price_id.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_

from ..extensions import db
from ..models import PriceOffer, PriceRoleAccess
from ..models.catalog import PRICE_CHANNEL_ALL
from factory_ledger.time_utils import utcnow, to_utc_z


def channel_matches(price: PriceOffer, channel: str) -> bool:
    return price.channel == PRICE_CHANNEL_ALL or price.channel == channel


def is_within_validity(price: PriceOffer, now: datetime | None = None) -> bool:
    now = now or utcnow()
    if price.valid_from is not None and price.valid_from > now:
        return False
    if price.valid_until is not None and price.valid_until <= now:
        return False
    return True


def is_authorized(price: PriceOffer, role: str, channel: str, now: datetime | None = None) -> bool:
    """Check whether `role` may use `price` when selling in `channel`."""
    if not price.is_active:
        return False
    if not channel_matches(price, channel):
        return False
    if not is_within_validity(price, now):
        return False
    return role in price.authorized_roles


def available_prices(
    role: str,
    channel: str,
    product_id: int | None = None,
    now: datetime | None = None,
) -> list[PriceOffer]:
    """Eligible price offers for a role and channel, cheapest first."""
    now = now or utcnow()
    q = (
        db.session.query(PriceOffer)
        .join(PriceRoleAccess, PriceRoleAccess.price_offer_id == PriceOffer.id)
        .filter(
            PriceRoleAccess.role == role,
            PriceOffer.is_active.is_(True),
            or_(PriceOffer.channel == channel, PriceOffer.channel == PRICE_CHANNEL_ALL),
            or_(PriceOffer.valid_from.is_(None), PriceOffer.valid_from <= now),
            or_(PriceOffer.valid_until.is_(None), PriceOffer.valid_until > now),
        )
    )
    if product_id is not None:
        q = q.filter(PriceOffer.product_id == product_id)

    return q.order_by(PriceOffer.amount_cents.asc(), PriceOffer.id.asc()).all()


def get_price_snapshot(price: PriceOffer) -> dict:
    """Values copied into a sale line at creation time."""
    return {
        "price_offer_id": price.id,
        "product_id": price.product_id,
        "amount_cents": price.amount_cents,
        "captured_at": to_utc_z(utcnow()),
    }
