from src.infrastructure.events.in_memory import InMemoryEventPublisher
from src.infrastructure.events.logging_publisher import LoggingEventPublisher

__all__ = ["InMemoryEventPublisher", "LoggingEventPublisher"]
