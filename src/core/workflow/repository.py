from typing import Optional, Protocol

from src.core.workflow.models import RequestRecord


class RequestRepository(Protocol):
    def create_request(self, request: RequestRecord) -> None: ...

    def get_request(self, *, request_id: str) -> Optional[RequestRecord]: ...

    def list_requests(
        self,
        *,
        created_by: Optional[str],
        status: Optional[str],
        include_terminal: bool,
    ) -> list[RequestRecord]: ...

    def save_request(
        self,
        *,
        request: RequestRecord,
        expected_version: int,
        derived_request: Optional[RequestRecord] = None,
    ) -> bool:
        """Write ``request`` only if the stored version still equals ``expected_version``.

        ``derived_request`` is inserted in the same unit of work. Returns False
        on a version mismatch without writing anything.
        """
        ...

    def delete_request(self, *, request_id: str) -> bool: ...
