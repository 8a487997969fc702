import json
from contextlib import closing
from datetime import datetime
from decimal import Decimal
from importlib.util import find_spec
from typing import Optional

from src.core.workflow.models import HistoryEntry, LineItem, RequestRecord
from src.infrastructure.postgres_migrations import apply_postgres_migrations

_COLUMNS = """
    request_id,
    request_type,
    chain,
    current_status,
    created_by,
    created_at,
    stage_entered_at,
    version,
    title,
    object_name,
    urgency,
    parent_request_id,
    stock_decremented,
    estimated_cost,
    budget_code,
    closed_at,
    specification_json,
    history_json,
    child_request_ids_json
"""


class PostgresRequestRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("REQUEST_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("REQUEST_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    def create_request(self, request: RequestRecord) -> None:
        with closing(self._connect()) as connection:
            self._insert_request(connection=connection, request=request)
            connection.commit()

    def get_request(self, *, request_id: str) -> Optional[RequestRecord]:
        query = f"SELECT {_COLUMNS} FROM request_records WHERE request_id = %s"
        with closing(self._connect()) as connection:
            row = connection.execute(query, (request_id,)).fetchone()
        return _to_request(row) if row is not None else None

    def list_requests(
        self,
        *,
        created_by: Optional[str],
        status: Optional[str],
        include_terminal: bool,
    ) -> list[RequestRecord]:
        where_clauses = []
        args: list[str] = []
        if created_by is not None:
            where_clauses.append("created_by = %s")
            args.append(created_by)
        if status is not None:
            where_clauses.append("current_status = %s")
            args.append(status)
        if not include_terminal:
            where_clauses.append("current_status NOT IN ('polucheno', 'otkloneno')")
        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        query = f"""
            SELECT {_COLUMNS}
            FROM request_records
            {where_sql}
            ORDER BY created_at DESC, request_id DESC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, tuple(args)).fetchall()
        return [_to_request(row) for row in rows]

    def save_request(
        self,
        *,
        request: RequestRecord,
        expected_version: int,
        derived_request: Optional[RequestRecord] = None,
    ) -> bool:
        query = """
            UPDATE request_records SET
                current_status = %s,
                stage_entered_at = %s,
                version = %s,
                title = %s,
                object_name = %s,
                stock_decremented = %s,
                estimated_cost = %s,
                budget_code = %s,
                closed_at = %s,
                specification_json = %s,
                history_json = %s,
                child_request_ids_json = %s
            WHERE request_id = %s AND version = %s
        """
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                query,
                (
                    request.current_status,
                    request.stage_entered_at.isoformat(),
                    request.version,
                    request.title,
                    request.object_name,
                    request.stock_decremented,
                    _optional_decimal(request.estimated_cost),
                    request.budget_code,
                    _optional_iso(request.closed_at),
                    _dump_items(request.specification),
                    _dump_history(request.history),
                    json.dumps(request.child_request_ids),
                    request.request_id,
                    expected_version,
                ),
            )
            if cursor.rowcount != 1:
                connection.rollback()
                return False
            if derived_request is not None:
                self._insert_request(connection=connection, request=derived_request)
            connection.commit()
        return True

    def delete_request(self, *, request_id: str) -> bool:
        with closing(self._connect()) as connection:
            cursor = connection.execute(
                "DELETE FROM request_records WHERE request_id = %s", (request_id,)
            )
            connection.commit()
        return cursor.rowcount > 0

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="requests")

    def _insert_request(self, *, connection, request: RequestRecord) -> None:
        query = f"""
            INSERT INTO request_records ({_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                    %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        connection.execute(
            query,
            (
                request.request_id,
                request.request_type,
                request.chain,
                request.current_status,
                request.created_by,
                request.created_at.isoformat(),
                request.stage_entered_at.isoformat(),
                request.version,
                request.title,
                request.object_name,
                request.urgency,
                request.parent_request_id,
                request.stock_decremented,
                _optional_decimal(request.estimated_cost),
                request.budget_code,
                _optional_iso(request.closed_at),
                _dump_items(request.specification),
                _dump_history(request.history),
                json.dumps(request.child_request_ids),
            ),
        )


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _optional_decimal(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _dump_items(items: list[LineItem]) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items], sort_keys=True)


def _dump_history(history: list[HistoryEntry]) -> str:
    return json.dumps([entry.model_dump(mode="json") for entry in history], sort_keys=True)


def _to_request(row) -> RequestRecord:
    return RequestRecord(
        request_id=row["request_id"],
        request_type=row["request_type"],
        chain=row["chain"],
        current_status=row["current_status"],
        created_by=row["created_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
        stage_entered_at=datetime.fromisoformat(row["stage_entered_at"]),
        version=int(row["version"]),
        title=row["title"],
        object_name=row["object_name"],
        urgency=row["urgency"],
        parent_request_id=row["parent_request_id"],
        stock_decremented=bool(row["stock_decremented"]),
        estimated_cost=(
            Decimal(row["estimated_cost"]) if row["estimated_cost"] is not None else None
        ),
        budget_code=row["budget_code"],
        closed_at=(
            datetime.fromisoformat(row["closed_at"]) if row["closed_at"] is not None else None
        ),
        specification=[
            LineItem.model_validate(item) for item in json.loads(row["specification_json"])
        ],
        history=[HistoryEntry.model_validate(entry) for entry in json.loads(row["history_json"])],
        child_request_ids=list(json.loads(row["child_request_ids_json"])),
    )
