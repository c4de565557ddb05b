"""
Sales agent entry point.

Runs the agent against the configured model, MCP tool server and
database. Console mode is an interactive text loop for development.

Usage:
    Create tables:  python main.py init-db
    Console mode:   python main.py console [--session ID] [--phone N] [--name NAME]

Console commands:
    /unblock   hand a blocked session back to the agent
    /clear     delete the session and its transcript
    /quit      exit
"""

import argparse
import asyncio
import logging

from sales_agent.config import settings

logger = logging.getLogger(__name__)


async def _init_db() -> None:
    """Create all tables in the configured database."""
    from sales_agent.storage.database import create_engine, init_models

    engine = create_engine()
    try:
        await init_models(engine)
    finally:
        await engine.dispose()
    logger.info("Database initialized at %s", settings.storage.database_url)


async def _run_console(session_id: str, phone: str, name: str) -> None:
    """Interactive loop against the live model and tool server."""
    from sales_agent.agents import SalesAgent
    from sales_agent.llm.client import LLMClient
    from sales_agent.storage.database import create_engine, create_session_factory, init_models
    from sales_agent.storage.session_store import SessionStore
    from sales_agent.tools.provider import MCPToolProvider

    engine = create_engine()
    await init_models(engine)
    tools = MCPToolProvider()
    agent = SalesAgent(LLMClient(), tools, SessionStore(create_session_factory(engine)))

    print(f"{settings.store.assistant_name} ({settings.store.name}) - session {session_id}. /quit to exit.")
    try:
        while True:
            try:
                text = (await asyncio.to_thread(input, "você> ")).strip()
            except EOFError:
                break
            if not text:
                continue
            if text == "/quit":
                break
            if text == "/unblock":
                released = await agent.release_session(session_id)
                print("[sessão liberada]" if released else "[sessão não encontrada]")
                continue
            if text == "/clear":
                await agent.clear_session(session_id)
                print("[sessão apagada]")
                continue

            print(f"{settings.store.assistant_name}> ", end="", flush=True)
            async for delta in agent.converse(session_id, text, customer_phone=phone, customer_name=name):
                print(delta, end="", flush=True)
            print()
    finally:
        await tools.aclose()
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Storefront sales agent")
    subparsers = parser.add_subparsers(dest="mode", required=True)

    subparsers.add_parser("init-db", help="create database tables")

    console = subparsers.add_parser("console", help="interactive text session")
    console.add_argument("--session", default="console-5583999990000")
    console.add_argument("--phone", default="5583999990000")
    console.add_argument("--name", default="Cliente Teste")

    args = parser.parse_args()
    if args.mode == "init-db":
        asyncio.run(_init_db())
    else:
        asyncio.run(_run_console(args.session, args.phone, args.name))


if __name__ == "__main__":
    main()
