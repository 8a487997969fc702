from copy import deepcopy
from threading import Lock
from typing import Optional

from src.core.workflow.models import TERMINAL_STATUSES, RequestRecord
from src.core.workflow.repository import RequestRepository


class InMemoryRequestRepository(RequestRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._requests: dict[str, RequestRecord] = {}

    def create_request(self, request: RequestRecord) -> None:
        with self._lock:
            self._requests[request.request_id] = deepcopy(request)

    def get_request(self, *, request_id: str) -> Optional[RequestRecord]:
        with self._lock:
            request = self._requests.get(request_id)
            return deepcopy(request) if request is not None else None

    def list_requests(
        self,
        *,
        created_by: Optional[str],
        status: Optional[str],
        include_terminal: bool,
    ) -> list[RequestRecord]:
        with self._lock:
            rows = list(self._requests.values())

        rows = sorted(rows, key=lambda x: (x.created_at, x.request_id), reverse=True)
        if created_by is not None:
            rows = [row for row in rows if row.created_by == created_by]
        if status is not None:
            rows = [row for row in rows if row.current_status == status]
        if not include_terminal:
            rows = [row for row in rows if row.current_status not in TERMINAL_STATUSES]
        return [deepcopy(row) for row in rows]

    def save_request(
        self,
        *,
        request: RequestRecord,
        expected_version: int,
        derived_request: Optional[RequestRecord] = None,
    ) -> bool:
        with self._lock:
            stored = self._requests.get(request.request_id)
            if stored is None or stored.version != expected_version:
                return False
            self._requests[request.request_id] = deepcopy(request)
            if derived_request is not None:
                self._requests[derived_request.request_id] = deepcopy(derived_request)
        return True

    def delete_request(self, *, request_id: str) -> bool:
        with self._lock:
            return self._requests.pop(request_id, None) is not None
