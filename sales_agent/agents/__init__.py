from sales_agent.agents.curator import ProductCurator
from sales_agent.agents.memory import CustomerMemoryService
from sales_agent.agents.sales_agent import SalesAgent
from sales_agent.agents.synthesis import ResponseSynthesizer
from sales_agent.agents.tool_loop import LoopOutcome, ToolExecutionLoop, ToolExecutionResult

__all__ = [
    "SalesAgent", "ToolExecutionLoop", "ToolExecutionResult", "LoopOutcome",
    "ResponseSynthesizer", "ProductCurator", "CustomerMemoryService",
]
