"""Slack Web API integration for task completion notices."""

from dataclasses import dataclass

from agent_pool.core.models import TaskMessage, TaskOutcome


class SlackError(Exception):
    """Raised when a Slack operation fails."""


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


def get_client(token: str | None):
    """Get a Slack WebClient. Returns None if no token provided."""
    if not token:
        return None
    from slack_sdk import WebClient
    return WebClient(token=token)


def send_message(
    token: str | None,
    channel: str,
    text: str,
    blocks: list[dict] | None = None,
) -> SlackMessage:
    """Send a message to a Slack channel."""
    client = get_client(token)
    if not client:
        raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")

    from slack_sdk.errors import SlackApiError

    try:
        response = client.chat_postMessage(
            channel=channel,
            text=text,
            blocks=blocks,
        )
    except SlackApiError as e:
        raise SlackError(f"Slack API error: {e.response['error']}") from e

    return SlackMessage(
        channel=response["channel"],
        ts=response["ts"],
        text=text,
    )


def format_task_outcome(agent_name: str, task: TaskMessage, outcome: TaskOutcome) -> list[dict]:
    """Format a finished task as Slack blocks."""
    emoji = ":white_check_mark:" if outcome.ok else ":x:"
    status = "completed" if outcome.ok else "failed"
    summary = task.content if len(task.content) <= 80 else task.content[:80] + "..."

    lines = [
        f"{emoji} *{agent_name}* {status} `{task.id}`",
        f"Task: {summary}",
    ]
    if outcome.branch:
        pushed = "pushed" if outcome.pushed else "not pushed"
        lines.append(f"Branch: `{outcome.branch}` ({pushed})")
    if outcome.error:
        lines.append(f"Error: {outcome.error[:200]}")

    return [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": "\n".join(lines)},
        }
    ]
