"""Simple CLI REPL for chatting with Quinn.

Streams answers from the analysis endpoint (ANALYSIS_URL) as they arrive.

Usage:
    uv run python -m quinn.cli [--session SESSION_ID]
"""

import argparse
import asyncio
import logging
import sys

import httpx

from quinn.analysis.chat import ChatSession
from quinn.analysis.stream import AnalysisError
from quinn.config import get_settings

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


async def _fetch_context(client: httpx.AsyncClient, base_url: str, session_id: str | None) -> dict[str, object] | None:
    """Ask the API for the incident snapshot to send along. None on failure."""
    params = {"session_id": session_id} if session_id else None
    try:
        resp = await client.get(f"{base_url}/context", params=params)
        resp.raise_for_status()
        data: dict[str, object] = resp.json()
        return data
    except httpx.HTTPError as e:
        print(f"(could not load incident context: {e})", file=sys.stderr)
        return None


async def run(session_id: str | None) -> None:
    settings = get_settings()
    base_url = settings.analysis_url.rsplit("/analysis/", 1)[0]

    print("Quinn (type 'quit' or Ctrl+C to exit)")
    print("=" * 50)
    if session_id:
        print(f"Watching session: {session_id}\n")

    async with httpx.AsyncClient(timeout=settings.analysis_timeout_seconds) as client:
        chat = ChatSession(url=settings.analysis_url, client=client)

        while True:
            try:
                question = (await asyncio.to_thread(input, "You: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                break

            if not question:
                continue
            if question.lower() in ("quit", "exit", "q"):
                print("Goodbye!")
                break

            context = await _fetch_context(client, base_url, session_id)
            printed = 0
            print("\nQuinn: ", end="", flush=True)
            try:
                async for message in chat.ask(question, context):  # type: ignore[arg-type]
                    text = message.text
                    print(text[printed:], end="", flush=True)
                    printed = len(text)
                print("\n")
            except AnalysisError as e:
                print(f"\nError: {e.message} (try again)\n")


def main() -> None:
    """Run the interactive CLI loop."""
    parser = argparse.ArgumentParser(description="Chat with Quinn about incidents")
    parser.add_argument("--session", help="Scope the conversation to one session id")
    args = parser.parse_args()
    try:
        asyncio.run(run(args.session))
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    main()
