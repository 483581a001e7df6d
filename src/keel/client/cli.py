"""Interactive shell that drives the Keel engine in-process."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Tuple

from keel.agent.engine import Engine
from keel.agent.factory import build_engine
from keel.common import (
    AnsiColors,
    colored_print,
)
from keel.config import settings
from keel.core.errors import KeelError
from keel.core.schema import (
    HistoryMessage,
    Request,
    Response,
)

logger = logging.getLogger(__name__)

EXIT_WORDS = {"exit", "quit"}


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def print_response(response: Response) -> None:
    for obs in response.observations:
        if obs.result is not None:
            payload = json.dumps(obs.result.data, sort_keys=True, default=str)
            colored_print(f"[{obs.tool_name}] {payload}", AnsiColors.GREEN)
        else:
            colored_print(f"[{obs.tool_name}] error: {obs.error}", AnsiColors.RED)
    colored_print(response.text, AnsiColors.YELLOW)
    logger.debug("Trace: %s", " -> ".join(response.trace.names()))


def run_cli(engine: Engine | None = None, user_id: str = "", project_id: str = "") -> None:
    """Read messages from stdin and answer them until the user quits."""
    engine = engine or build_engine(settings)
    session_id = uuid.uuid4().hex
    history: list[HistoryMessage] = []

    colored_print("\nKeel shell - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN)
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break
        if user_msg.lower() in EXIT_WORDS:
            break
        if not user_msg:
            continue

        request = Request(
            query=user_msg,
            session_id=session_id,
            user_id=user_id,
            project_id=project_id,
            history=list(history),
        )
        try:
            response = asyncio.run(engine.run(request))
        except KeelError as exc:
            logger.debug("Engine error", exc_info=True)
            colored_print(f"Error: {exc}", AnsiColors.RED)
            continue

        print_response(response)
        history.append(HistoryMessage(role="user", content=user_msg))
        history.append(HistoryMessage(role="assistant", content=response.text))


if __name__ == "__main__":
    run_cli()
