"""Streaming Example - intermediate events from generator nodes.

Architecture:
============

    [Prompt] ──QuestionEvent──► [Answer] ──ChunkEvent──► [Collect] ──► StopEvent
                                   │
                            yields chunks ──► handler.events()

A node that yields several events streams every one but the last to the
caller; the last is routed to the next node. Async generators work the same
way.
"""

import asyncio
from typing import AsyncIterator

from flowstate import Event, Node, StartEvent, StopEvent, Workflow, WorkflowState


class QuestionEvent(Event):
    text: str


class ChunkEvent(Event):
    text: str
    final: bool = False


class Prompt(Node):
    def __call__(self, event: StartEvent, state: WorkflowState) -> QuestionEvent:
        return QuestionEvent(text="What does a workflow engine do?")


class Answer(Node):
    async def __call__(self, event: QuestionEvent, state: WorkflowState) -> AsyncIterator[ChunkEvent]:
        words = "It routes typed events between nodes until one of them stops".split()
        for word in words:
            await asyncio.sleep(0.05)
            yield ChunkEvent(text=word)
        yield ChunkEvent(text=" ".join(words), final=True)


class Collect(Node):
    def __call__(self, event: ChunkEvent, state: WorkflowState) -> StopEvent:
        state.set("answer", event.text)
        return StopEvent(event.text)


async def main():
    workflow = Workflow().add_nodes([Prompt(), Answer(), Collect()])
    handler = workflow.start()

    async for event in handler.events():
        print(event.text, end=" ", flush=True)
    print()

    state = await handler.run()
    print(f"Final answer: {state['answer']}")


if __name__ == "__main__":
    asyncio.run(main())
