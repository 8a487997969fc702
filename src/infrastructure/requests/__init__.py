from src.infrastructure.requests.in_memory import InMemoryRequestRepository
from src.infrastructure.requests.postgres import PostgresRequestRepository

__all__ = ["InMemoryRequestRepository", "PostgresRequestRepository"]
