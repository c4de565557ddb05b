"""Durable per-customer summaries, keyed by phone number."""

from typing import Optional

from sales_agent.logging_context import get_session_logger
from sales_agent.prompts.prompt_templates import build_checkout_summary
from sales_agent.schemas.checkout_schema import CheckoutData, CheckoutState
from sales_agent.storage.session_store import SessionStore

logger = get_session_logger(__name__)


class CustomerMemoryService:
    """Reads and writes the customer memory summary through the session store."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    async def get_summary(self, customer_phone: Optional[str]) -> Optional[str]:
        if not customer_phone:
            return None
        record = await self._store.get_customer_memory(customer_phone)
        return record.summary if record is not None else None

    async def save(self, customer_phone: Optional[str], summary: str) -> bool:
        """Store ``summary`` for the customer. Returns False when there is no phone to key it by."""
        if not customer_phone:
            logger.debug("No customer phone, memory summary not saved")
            return False
        if not summary.strip():
            return False
        await self._store.save_customer_memory(customer_phone, summary.strip())
        return True

    async def save_checkout_milestone(
        self,
        customer_phone: Optional[str],
        data: CheckoutData,
        state: CheckoutState,
        customer_name: Optional[str] = None,
    ) -> bool:
        summary = build_checkout_summary(data, state, customer_name)
        logger.info("Checkout advanced to %s", state.value)
        return await self.save(customer_phone, summary)
