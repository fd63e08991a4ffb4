"""
Example usage of the Identro client from an agent process.

Records a few task outcomes, wraps a tool call with ``track``, flushes and
reads back the agent's score.
"""

import asyncio
import random
import sys

from loguru import logger

from identro_client import FailReason, Framework, IdentroClient


async def call_tool(name: str) -> str:
    await asyncio.sleep(random.uniform(0.01, 0.05))
    if random.random() < 0.2:
        raise RuntimeError(f"{name} failed")
    return f"{name}: ok"


async def main() -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")

    async with IdentroClient(
        api_key="your-api-key-here",
        endpoint="http://localhost:3000",
        agent_id="example-agent-001",
        framework=Framework.MCP,
    ) as identro:
        print("=== Recording events ===")
        await identro.record_success(
            "task-001", 142, metadata={"model": "gpt-4", "prompt_tokens": 150}
        )
        await identro.record_failure(
            "task-002",
            3500,
            fail_reason=FailReason.NETWORK_ERROR,
            detail_code="HTTP_504",
            metadata={"retry_count": 3},
        )
        await identro.record_success(
            "task-003",
            response_time_ms=320,
            quality_rating=4.5,
            task_category="api_integration",
            interaction_context={"consumer_agent_id": "agent-b", "tool_used": "search"},
        )

        print("=== Tracking tool calls ===")
        for i in range(10):
            try:
                async with identro.track(f"tool-call-{i}", task_complexity="simple"):
                    print(await call_tool(f"search-{i}"))
            except RuntimeError as e:
                print(f"recorded failure: {e}")

        await identro.flush()

        try:
            score = await identro.get_score()
            print(f"Score: {score.score} ({score.tier}), events={score.total_events}")
        except Exception as e:
            print(f"Failed to get score: {e}")
    # pending events drained on exit


if __name__ == "__main__":
    asyncio.run(main())
