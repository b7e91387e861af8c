import asyncio
import os
import sys
import uuid

from dotenv import load_dotenv

from coach.config import ConfigLoader
from coach.logging_config import configure_logging
from coach.models import Message, TurnRequest
from coach.planner import TurnOrchestrator
from coach.turns import TurnService
from journal import ActionJournal, InMemoryActivityStore, InMemoryJournalStore
from providers.factory import ProviderFactory
from tools import build_registry

def print_event(event):
    if event.type == "tool_start":
        print(f"  [{event.tool_name}] ...", flush=True)
    elif event.type == "tool_result":
        for block in event.blocks:
            title = getattr(block, "title", None) or block.type
            print(f"  [{event.tool_name}] {title}", flush=True)
    elif event.type == "error":
        print(f"  ! {event.message}", flush=True)

async def main():
    load_dotenv()
    config = ConfigLoader(os.getenv("COACH_CONFIG", "config.toml")).get_config()
    configure_logging(log_level=os.getenv("LOG_LEVEL", "WARNING"), force_json=False)

    factory = ProviderFactory(config)
    activity = InMemoryActivityStore()
    journal = ActionJournal(InMemoryJournalStore(), activity)
    registry = build_registry()
    backend = factory.get_backend()
    orchestrator = TurnOrchestrator(backend, registry, config.planner.max_tool_rounds,
                                    config.planner.round_timeout_seconds) if backend else None
    service = TurnService(registry, journal, activity, orchestrator, config.planner.turn_timeout_seconds)

    user_id = os.getenv("COACH_USER_ID", "local-user")
    history = []
    last_turn_id = None
    print(f"coach ({service.model_label}). 'undo' reverts the last turn, empty line quits.")
    try:
        while (text := input(">> ").strip()):
            if text == "undo":
                if last_turn_id is None:
                    print("Nothing to undo.")
                    continue
                outcome = await journal.undo_turn(user_id, last_turn_id)
                print(f"Undid {outcome.undone_count} change(s)." if outcome.ok else outcome.message)
                continue

            history.append(Message(role="user", content=text))
            last_turn_id = f"turn_{uuid.uuid4().hex}"
            request = TurnRequest(messages=history[-30:], turn_id=last_turn_id)
            response = await service.run_turn(request, user_id, on_event=print_event)
            print(response.assistant_text)
            history.append(Message(role="assistant", content=response.assistant_text))
    except (EOFError, KeyboardInterrupt):
        print()
    finally:
        await factory.close_all()
    return 0

if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
