"""Basic usage example for Agno Stepflow.

This example demonstrates:
1. Building a workflow from steps
2. Streaming its events
3. Running the bundled expense approval workflow
4. Suspending for a manager and resuming with a decision
"""

import asyncio
import logging

from agno_stepflow import (
    InMemoryStorage,
    WorkflowManager,
    and_then,
    create_workflow_chain,
)


def build_order_workflow():
    """Price an order, check stock and shipping in parallel, then confirm."""

    def price(ctx):
        items = ctx.data["items"]
        return {**ctx.data, "total": sum(item["price"] * item["qty"] for item in items)}

    async def check_stock(ctx):
        await asyncio.sleep(0.1)
        return {"in_stock": True}

    async def quote_shipping(ctx):
        await asyncio.sleep(0.05)
        ctx.writer.write("shipping-quote", output={"carrier": "post", "cost": 4.5})
        return {"shipping": 4.5}

    def confirm(ctx):
        order = ctx.get_step_data("price").output
        return {
            "confirmed": ctx.data["in_stock"],
            "amount": order["total"] + ctx.data["shipping"],
        }

    return (
        create_workflow_chain("order", name="Order confirmation")
        .and_then(price, id="price")
        .and_all([
            and_then(check_stock, id="check-stock"),
            and_then(quote_shipping, id="quote-shipping"),
        ], id="checks")
        .and_tap(lambda ctx: print(f"   Checks done: {ctx.data}"), id="log-checks")
        .and_then(confirm, id="confirm")
        .build()
    )


async def main():
    """Main example function."""
    manager = WorkflowManager(storage=InMemoryStorage())

    try:
        await manager.initialize()
        print("✅ Workflow manager initialized")

        # Example 1: Stream a custom workflow
        print("\n📋 Example 1: Streaming a custom workflow")
        print("-" * 50)

        manager.register_workflow(build_order_workflow())
        stream = await manager.stream_workflow(
            "order",
            {"items": [{"price": 10.0, "qty": 2}, {"price": 3.5, "qty": 1}]},
        )
        async for event in stream:
            print(f"   {event.type:<18} from {event.from_}")

        result = await stream.result()
        print(f"✨ Result: {result.result}")

        # Example 2: Auto-approved expense
        print("\n\n📋 Example 2: Small expense")
        print("-" * 50)

        result = await manager.execute_workflow("expense-approval", {"amount": 50})
        print(f"Status: {result.status.value} | Result: {result.result}")

        # Example 3: Expense that needs a manager
        print("\n\n📋 Example 3: Large expense")
        print("-" * 50)

        suspended = await manager.execute_workflow(
            "expense-approval",
            {"amount": 5000, "requester": "demo_user"},
            {"user_id": "demo_user"},
        )
        print(f"Status: {suspended.status.value}")
        print(f"Reason: {suspended.suspension.reason}")
        print(f"Payload: {suspended.suspension.payload}")

        pending = await manager.list_suspended("expense-approval")
        print(f"Found {len(pending)} execution(s) waiting for approval")

        # Example 4: Resume with the manager's decision
        print("\n\n📋 Example 4: Resuming with a decision")
        print("-" * 50)

        done = await manager.resume_execution(
            "expense-approval",
            suspended.execution_id,
            {"approved": True, "approverId": "m1", "comment": "Conference travel"},
        )
        print(f"✅ Status: {done.status.value} | Result: {done.result}")

    finally:
        await manager.close()
        print("\n\n✅ Workflow manager closed")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)

    print("🚀 Agno Stepflow - Basic Usage Example")
    print("=" * 60)

    asyncio.run(main())
