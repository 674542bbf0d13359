"""MCP prompt templates for the planner."""

from agent_pool.mcp.server import mcp


@mcp.prompt()
def delegate_work(goal: str) -> str:
    """Generate a prompt to split a goal across the executor agents."""
    return (
        f"I need to accomplish the following goal:\n\n"
        f"{goal}\n\n"
        f"Please:\n"
        f"1. Use queue_status to see which agents exist and how busy each one is\n"
        f"2. Break the goal into independent pieces of work, one per executor\n"
        f"3. Use dispatch_task to send each piece to the least busy executor, with\n"
        f"   enough context that it can work without asking questions\n"
        f"4. Use get_response with each task_id to collect the results\n"
        f"5. Summarize what each executor did and which branch holds its work"
    )


@mcp.prompt()
def pool_report() -> str:
    """Generate a prompt for a status report on the agent pool."""
    return (
        "Please report on the state of the agent pool.\n\n"
        "Use agent_runtimes, queue_status and list_workspaces, then provide:\n"
        "1. Which agents are running and which are down\n"
        "2. How much work is queued for each agent\n"
        "3. Which branch each executor is working on\n"
        "4. Anything that needs attention"
    )
