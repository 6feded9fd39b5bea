"""Render queued events into title / message / colour / fields."""
from datetime import datetime
from typing import Any, Dict, List

from src.sentinel.notifications.models import Color, EventType, NotificationContent, NotificationField


def _text(value: Any, default: str = "unknown") -> str:
    if value is None or value == "":
        return default
    return str(value)


def _seconds(ms: Any) -> str:
    try:
        return f"{round(float(ms) / 1000)}s"
    except (TypeError, ValueError):
        return "unknown"


def render_content(event: Dict[str, Any], environment: str, now: datetime) -> NotificationContent:
    """Build the channel-independent content for an event.

    The event's own ``environment`` wins over the process environment.
    """
    env = _text(event.get("environment"), environment)
    env_field = NotificationField("Environment", env)
    deployment_id = _text(event.get("deployment_id") or event.get("id"))
    event_type = event.get("type")

    if event_type == EventType.DEPLOYMENT_SUCCESS:
        return NotificationContent(
            title=f"✅ Deployment Successful - {env}",
            message=f"Deployment {deployment_id} completed successfully",
            color=Color.GOOD,
            timestamp=now,
            fields=[
                env_field,
                NotificationField("Version", _text(event.get("version"))),
                NotificationField("Duration", _seconds(event.get("duration_ms"))),
                NotificationField("Image Tag", _text(event.get("image_tag"))),
                NotificationField("Actor", _text(event.get("actor"))),
                NotificationField("Branch", _text(event.get("branch"))),
            ],
        )

    if event_type == EventType.DEPLOYMENT_FAILURE:
        reason = _text(event.get("reason") or event.get("failure_reason"))
        return NotificationContent(
            title=f"❌ Deployment Failed - {env}",
            message=f"Deployment {deployment_id} failed: {reason}",
            color=Color.DANGER,
            timestamp=now,
            fields=[
                env_field,
                NotificationField("Failure Reason", reason, inline=False),
                NotificationField("Duration", _seconds(event.get("duration_ms"))),
                NotificationField("Actor", _text(event.get("actor"))),
                NotificationField("Branch", _text(event.get("branch"))),
            ],
        )

    if event_type == EventType.ROLLBACK_TRIGGERED:
        fields: List[NotificationField] = [
            env_field,
            NotificationField("Trigger Reason", _text(event.get("reason")), inline=False),
        ]
        if event.get("details"):
            fields.append(NotificationField("Details", _text(event.get("details")), inline=False))
        if event.get("strategy"):
            fields.append(NotificationField("Strategy", _text(event.get("strategy"))))
        fields.append(NotificationField("Reference", deployment_id))
        return NotificationContent(
            title=f"🔄 Rollback Triggered - {env}",
            message=f"Rollback initiated for {deployment_id}",
            color=Color.WARNING,
            timestamp=now,
            fields=fields,
        )

    if event_type == EventType.ROLLBACK_COMPLETED:
        completed = event.get("status") == "completed"
        return NotificationContent(
            title=f"{'✅ Rollback Completed' if completed else '❌ Rollback Failed'} - {env}",
            message=f"Rollback {deployment_id} finished with status {_text(event.get('status'))}",
            color=Color.GOOD if completed else Color.DANGER,
            timestamp=now,
            fields=[
                env_field,
                NotificationField("Strategy", _text(event.get("strategy"))),
                NotificationField("Duration", _seconds(event.get("duration_ms"))),
                NotificationField("Reason", _text(event.get("reason")), inline=False),
                NotificationField("Errors", "; ".join(event.get("errors") or []) or "none", inline=False),
            ],
        )

    if event_type == EventType.HEALTH_CHECK_FAILURE:
        return NotificationContent(
            title=f"🚨 Health Check Failure - {env}",
            message=f"Health check failed: {_text(event.get('endpoint'))}",
            color=Color.DANGER,
            timestamp=now,
            fields=[
                env_field,
                NotificationField("Endpoint", _text(event.get("endpoint"))),
                NotificationField("Error", _text(event.get("error"), "none"), inline=False),
                NotificationField("Response Time", f"{_text(event.get('response_time_ms'))}ms"),
            ],
        )

    if event_type == EventType.PERFORMANCE_DEGRADATION:
        return NotificationContent(
            title=f"⚠️ Performance Degradation - {env}",
            message=_text(event.get("message"), "Performance metrics exceed thresholds"),
            color=Color.WARNING,
            timestamp=now,
            fields=[
                env_field,
                NotificationField("Metric", _text(event.get("metric"))),
                NotificationField("Current Value", _text(event.get("current_value"))),
                NotificationField("Threshold", _text(event.get("threshold"))),
            ],
        )

    if event_type == EventType.SERVICE_RECOVERY:
        return NotificationContent(
            title=f"✅ Service Recovery - {env}",
            message="Service has recovered from issues",
            color=Color.GOOD,
            timestamp=now,
            fields=[
                env_field,
                NotificationField("Recovery Time", _seconds(event.get("recovery_time_ms"))),
                NotificationField("Previous Issue", _text(event.get("previous_issue")), inline=False),
            ],
        )

    return NotificationContent(
        title=f"📢 System Notification - {env}",
        message=_text(event.get("message"), "System notification"),
        color=Color.NEUTRAL,
        timestamp=now,
        fields=[env_field, NotificationField("Event Type", _text(event_type))],
    )
