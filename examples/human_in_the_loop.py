"""Human-in-the-loop Example - suspend, persist, resume.

Architecture:
============

    [Draft] ──DraftEvent──► [Review] ──ReviewedEvent──► [Publish] ──► StopEvent
                               │
                           interrupt()
                               │
                     snapshot saved to SQLite
                               │
                   start(resume=True, feedback=...)

The run suspends inside Review. The snapshot (current node, triggering
event, state) is written to a SQLite database, so the resume can happen in a
different process. Run the script twice: the first run suspends, the second
resumes with the answer you type.

Key APIs:
- Node.interrupt(request) - suspend, or return the feedback when resuming
- Workflow.start(resume=True, feedback=...) - continue a suspended run
- WorkflowHandler.execute() - completed/suspended outcome without exceptions
"""

import asyncio

from flowstate import (
    Event,
    InterruptRequest,
    LifecycleEvent,
    Node,
    SQLitePersistence,
    StartEvent,
    StopEvent,
    Workflow,
    WorkflowState,
)
from flowstate.utils.config import configure_logging, load_env

WORKFLOW_ID = "article-42"


# =============================================================================
# Events
# =============================================================================


class DraftEvent(Event):
    text: str


class ReviewedEvent(Event):
    text: str
    approved: bool
    comment: str = ""


# =============================================================================
# Nodes
# =============================================================================


class Draft(Node):
    def __call__(self, event: StartEvent, state: WorkflowState) -> DraftEvent:
        topic = state.get("topic", "durable workflows")
        return DraftEvent(text=f"A short article about {topic}.")


class Review(Node):
    def __call__(self, event: DraftEvent, state: WorkflowState) -> ReviewedEvent:
        answer = self.interrupt(
            InterruptRequest(message=f"Publish this draft?\n\n    {event.text}\n")
        )
        approved = str(answer).strip().lower() in ("y", "yes", "approve", "approved")
        state.set("reviewer_answer", answer)
        return ReviewedEvent(text=event.text, approved=approved, comment=str(answer))


class Publish(Node):
    def __call__(self, event: ReviewedEvent, state: WorkflowState) -> StopEvent:
        if not event.approved:
            return StopEvent({"published": False, "reason": event.comment})
        state.append("published", event.text)
        return StopEvent({"published": True, "text": event.text})


def log_node_events(event: LifecycleEvent) -> None:
    if event.node is not None:
        print(f"  [{event.name}] {event.node}")


def build_workflow() -> Workflow:
    workflow = Workflow(
        state=WorkflowState(topic="human review"),
        persistence=SQLitePersistence("examples.db"),
        workflow_id=WORKFLOW_ID,
    )
    return workflow.add_nodes([Draft(), Review(), Publish()]).observe(log_node_events)


# =============================================================================
# Main
# =============================================================================


async def main():
    load_env()
    configure_logging()

    workflow = build_workflow()
    print(workflow.export())

    if await workflow.persistence.exists(WORKFLOW_ID):
        answer = input("Resume: approve the draft? [yes/no] ")
        outcome = await workflow.start(resume=True, feedback=answer).execute()
    else:
        outcome = await workflow.start().execute()

    if outcome.suspended:
        print(f"\nSuspended at {outcome.interrupt.current_node}:")
        print(outcome.interrupt.request.message)
        print("Run the script again to answer.")
    else:
        print(f"\nFinished in {outcome.steps} steps: {outcome.result}")


if __name__ == "__main__":
    asyncio.run(main())
