import logging

from src.core.workflow.events import EventPublisher
from src.core.workflow.models import WorkflowEvent

logger = logging.getLogger("workflow.events")


class LoggingEventPublisher(EventPublisher):
    """Emits each event as one structured log line for downstream shipping."""

    def publish(self, event: WorkflowEvent) -> None:
        logger.info(
            "workflow.event",
            extra={
                "extra_fields": {
                    "workflow_event": event.model_dump(mode="json", exclude_none=True)
                }
            },
        )
