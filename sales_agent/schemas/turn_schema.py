"""Per-turn context handed down the call chain. Never shared between turns."""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sales_agent.conversation.tool_strategy import ToolStrategy
from sales_agent.schemas.checkout_schema import CheckoutData


@dataclass
class TurnContext:
    """Everything the loop, validators and curator need to know about one turn."""
    session_id: str
    user_message: str
    today: date
    customer_phone: Optional[str] = None
    customer_name: Optional[str] = None
    strategy: ToolStrategy = field(default_factory=ToolStrategy)
    checkout: CheckoutData = field(default_factory=CheckoutData)
    memory_summary: Optional[str] = None
    sent_product_ids: list[str] = field(default_factory=list)
    recent_user_texts: list[str] = field(default_factory=list)
