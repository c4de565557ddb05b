"""Checkout progress derived from the transcript."""

from dataclasses import dataclass, fields
from decimal import Decimal
from enum import Enum
from typing import Optional


class CheckoutState(str, Enum):
    """How far checkout has progressed, from browsing to ready-to-finalize."""
    BROWSING = "browsing"
    PRODUCT_SELECTED = "product_selected"
    WAITING_DATE = "waiting_date"
    WAITING_ADDRESS = "waiting_address"
    WAITING_PAYMENT = "waiting_payment"
    READY_TO_FINALIZE = "ready_to_finalize"


class DeliveryType(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


@dataclass(frozen=True)
class CheckoutData:
    """
    Order details reconstructed from one transcript window.

    Never persisted: the same transcript always yields the same value,
    and it is not trusted as complete until every required field is set.
    """
    product_name: Optional[str] = None
    product_price: Optional[Decimal] = None
    delivery_date: Optional[str] = None
    delivery_time: Optional[str] = None
    delivery_type: Optional[DeliveryType] = None
    address: Optional[str] = None
    payment_method: Optional[str] = None
    freight: Optional[Decimal] = None

    @property
    def total(self) -> Optional[Decimal]:
        if self.product_price is None:
            return None
        return self.product_price + (self.freight or Decimal("0"))

    @property
    def has_product(self) -> bool:
        return self.product_name is not None

    @property
    def has_schedule(self) -> bool:
        return self.delivery_date is not None and self.delivery_time is not None

    @property
    def has_destination(self) -> bool:
        return self.address is not None or self.delivery_type == DeliveryType.PICKUP

    def collected_fields(self) -> dict[str, object]:
        """Return the non-null fields, for logging and summaries."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }
