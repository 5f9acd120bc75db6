"""Advanced resumption demonstration.

This example shows:
1. Resuming an execution from a different manager (a "restarted" process)
2. Suspending a running execution from outside
3. Jumping back to an earlier step when resuming
4. Analyzing suspended executions
"""

import asyncio
import logging
import tempfile
from pathlib import Path

from agno_stepflow import (
    SQLiteStorage,
    Workflow,
    WorkflowManager,
    and_then,
)


def build_publishing_workflow() -> Workflow:
    """Draft, review (suspends for an editor) and publish an article."""

    async def draft(ctx):
        await asyncio.sleep(0.5)  # Slow enough to be suspended from outside
        revision = (ctx.resume_data or {}).get("revision", 1)
        return {"title": ctx.data["title"], "revision": revision}

    def review(ctx):
        if ctx.resume_data is None:
            return ctx.suspend(
                reason=f"Revision {ctx.data['revision']} needs an editor",
                payload={"title": ctx.data["title"], "revision": ctx.data["revision"]},
            )
        return {**ctx.data, "editor": ctx.resume_data["editor"]}

    def publish(ctx):
        return {"published": True, **ctx.data}

    return Workflow(
        "publishing",
        [
            and_then(draft, id="draft"),
            and_then(review, id="review"),
            and_then(publish, id="publish"),
        ],
        name="Article publishing",
    )


def create_manager(db_path: Path) -> WorkflowManager:
    manager = WorkflowManager(storage=SQLiteStorage(str(db_path)), register_defaults=False)
    manager.register_workflow(build_publishing_workflow())
    return manager


async def demonstrate_resumption_scenarios(db_path: Path):
    """Demonstrate various resumption scenarios."""

    # Scenario 1: suspend in one process, resume in another
    print("\n📋 Scenario 1: Resume after a restart")
    print("-" * 50)

    first = create_manager(db_path)
    await first.initialize()
    suspended = await first.execute_workflow("publishing", {"title": "Release notes"})
    print(f"Status: {suspended.status.value} | Reason: {suspended.suspension.reason}")
    await first.close()
    print("🔌 First manager closed")

    second = create_manager(db_path)
    await second.initialize()
    try:
        done = await second.resume_execution("publishing", suspended.execution_id, {"editor": "kim"})
        print(f"✅ Resumed by a new manager: {done.result}")

        # Scenario 2: suspend a running execution from outside
        print("\n\n📋 Scenario 2: External suspension")
        print("-" * 50)

        stream = await second.stream_workflow("publishing", {"title": "Roadmap"})
        await asyncio.sleep(0.1)
        info = await second.suspend_execution("publishing", stream.execution_id, "Maintenance window")
        print(f"Requested: {info['message']} ({info['reason']})")

        paused = await stream.result()
        print(f"Status: {paused.status.value} at step {paused.suspension.step_id}")

        # The draft step runs again from its beginning
        halted = await second.resume_execution("publishing", stream.execution_id)
        print(f"After resume: {halted.status.value} at step {halted.suspension.step_id}")

        # Scenario 3: send the article back to drafting
        print("\n\n📋 Scenario 3: Jump back to an earlier step")
        print("-" * 50)

        redrafted = await second.resume_execution(
            "publishing", stream.execution_id, {"revision": 2}, step_id="draft"
        )
        print(f"Status: {redrafted.status.value} | Payload: {redrafted.suspension.payload}")

        # Scenario 4: analysis
        print("\n\n📋 Scenario 4: Analyzing suspended executions")
        print("-" * 50)

        analysis = await second.analyze_execution(stream.execution_id)
        resumption = analysis["resumption_analysis"]
        print(f"Resumable: {resumption['resumable']}")
        print(f"Suspended at: {resumption['suspended_step']} ({resumption['reason']})")
        print(f"Completed steps: {analysis['completed_steps']}")
        print(f"Progress: {analysis['remaining_work']['estimated_completion_percentage']}%")
        print(f"Resume targets: {[t['step_id'] for t in resumption['resume_targets']]}")

        final = await second.resume_execution("publishing", stream.execution_id, {"editor": "lee"})
        print(f"\n✅ Final result: {final.result}")

    finally:
        await second.close()


async def main():
    with tempfile.TemporaryDirectory() as tmp:
        await demonstrate_resumption_scenarios(Path(tmp) / "resumption_demo.db")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)

    print("🚀 Agno Stepflow - Resumption Demo")
    print("=" * 60)

    asyncio.run(main())
