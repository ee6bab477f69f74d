# _tests/_smoke_test_agent.py
from __future__ import annotations
import asyncio
import json
import sys
from backend.src.core.config import bootstrap_env
bootstrap_env()

from backend.src.agents.driver import AgentRequest
from backend.src.agents.runner import AgentRunner
from backend.src.buffer.store import TaskStore
from backend.src.persistence.memory import InMemoryMessageStore

def send(ev): print("EVENT:", json.dumps(ev.to_wire()))

async def main(provider: str, model: str) -> None:
    store = TaskStore()
    runner = AgentRunner(store, InMemoryMessageStore())
    req = AgentRequest(conversation_id="demo", script_id="demo-script", agent_mode="game",
                       text="Start a tiny two-room adventure.", provider=provider, model=model)
    task = runner.start(req)
    store.subscribe(task.conversation_id, send)
    while store.get_status(task.conversation_id) == "running":
        await asyncio.sleep(0.1)
    print("STATUS:", store.get_status(task.conversation_id))
    print("BUFFER:", store.get_task(task.conversation_id).buffer)

if __name__ == "__main__":
    provider = sys.argv[1] if len(sys.argv) > 1 else "openai"
    model = sys.argv[2] if len(sys.argv) > 2 else "gpt-4o-mini"
    asyncio.run(main(provider, model))
