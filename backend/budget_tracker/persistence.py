from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, settings
from .entities import COLUMNS, EntityKind, Record, next_timestamp, to_cell, to_row
from .errors import BackendUnavailable
from .grid import GoogleSheetsGrid, Grid, InMemoryGrid, build_sheets_service
from .logging_setup import get_logger

logger = get_logger(__name__)


def _matches(record: Record, filters: dict[str, Any]) -> bool:
    for field, value in filters.items():
        if field not in record:
            return False
        expected = None if value is None else to_cell(value)
        if record.get(field) != expected:
            return False
    return True


def _strip_id(patch: Record, id_field: str) -> Record:
    return {k: v for k, v in patch.items() if k != id_field}


class Repository:
    """Entity-oriented CRUD over one backend; every kind has its own table or sheet."""

    def list_all(self, kind: EntityKind) -> list[Record]:
        raise NotImplementedError

    def list_where(self, kind: EntityKind, filters: dict[str, Any]) -> list[Record]:
        return [r for r in self.list_all(kind) if _matches(r, filters)]

    def get_by_id(self, kind: EntityKind, id_field: str, entity_id: str) -> Record | None:
        rows = self.list_where(kind, {id_field: entity_id})
        return rows[0] if rows else None

    def add(self, kind: EntityKind, record: Record) -> Record:
        raise NotImplementedError

    def update(self, kind: EntityKind, id_field: str, entity_id: str, patch: Record) -> Record | None:
        raise NotImplementedError

    def delete(self, kind: EntityKind, id_field: str, entity_id: str) -> bool:
        raise NotImplementedError

    def initialize(self, kind: EntityKind) -> None:
        raise NotImplementedError

    def reset_headers(self, kind: EntityKind) -> None:
        raise NotImplementedError

    def count(self, kind: EntityKind, filters: dict[str, Any] | None = None) -> int:
        if not filters:
            return len(self.list_all(kind))
        return len(self.list_where(kind, filters))

    def exists(self, kind: EntityKind, field: str, value: Any) -> bool:
        return bool(self.list_where(kind, {field: value}))


class SheetRowRepository(Repository):
    """Row store over a grid whose first row names the columns.

    The header is read on every call since the sheet can be edited by hand:
    values are paired with column names positionally on read and laid out in
    the stored header's order on write. Missing trailing cells come back as
    ``None``; fields without a column in the header are not stored.
    """

    def __init__(self, grid: Grid) -> None:
        self.grid = grid

    @staticmethod
    def _pair(headers: list[str], row: list[str]) -> Record:
        return {header: (row[idx] if idx < len(row) else None) for idx, header in enumerate(headers) if header}

    @staticmethod
    def _layout(headers: list[str], record: Record) -> list[str]:
        return [to_cell(record.get(header)) if header else "" for header in headers]

    def _locate(self, kind: EntityKind, id_field: str, entity_id: str) -> tuple[int, list[str], Record] | None:
        rows = self.grid.read_rows(kind.value)
        if len(rows) <= 1:
            return None
        headers = rows[0]
        if id_field not in headers:
            raise BackendUnavailable(f"column {id_field} not found in sheet {kind.value}")
        id_idx = headers.index(id_field)
        # Row 1 is the header, so the first data row is row 2.
        for row_number, row in enumerate(rows[1:], start=2):
            if id_idx < len(row) and row[id_idx] == entity_id:
                return row_number, headers, self._pair(headers, row)
        return None

    def list_all(self, kind: EntityKind) -> list[Record]:
        rows = self.grid.read_rows(kind.value)
        if len(rows) <= 1:
            return []
        headers = rows[0]
        return [self._pair(headers, row) for row in rows[1:]]

    def add(self, kind: EntityKind, record: Record) -> Record:
        headers = self.grid.read_header(kind.value)
        if not headers:
            logger.info("writing header row for sheet %s", kind.value)
            headers = list(COLUMNS[kind])
            self.grid.write_row(kind.value, 1, headers)
        self.grid.append_row(kind.value, self._layout(headers, record))
        return record

    def update(self, kind: EntityKind, id_field: str, entity_id: str, patch: Record) -> Record | None:
        found = self._locate(kind, id_field, entity_id)
        if found is None:
            return None
        row_number, headers, current = found
        merged = {**current, **_strip_id(patch, id_field)}
        merged["updatedAt"] = next_timestamp(current.get("updatedAt"))
        self.grid.write_row(kind.value, row_number, self._layout(headers, merged))
        return merged

    def delete(self, kind: EntityKind, id_field: str, entity_id: str) -> bool:
        found = self._locate(kind, id_field, entity_id)
        if found is None:
            return False
        self.grid.delete_row(kind.value, found[0])
        return True

    def initialize(self, kind: EntityKind) -> None:
        if not self.grid.read_header(kind.value):
            logger.info("writing header row for sheet %s", kind.value)
            self.grid.write_row(kind.value, 1, list(COLUMNS[kind]))

    def reset_headers(self, kind: EntityKind) -> None:
        self.grid.write_row(kind.value, 1, list(COLUMNS[kind]))


class PostgresRepository(Repository):
    """The same row semantics over SQL tables, one text column per field.

    ``_seq`` preserves insertion order so listings match the sheet backend.
    """

    def __init__(self, database_url: str) -> None:
        self.engine: Engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._ready: set[EntityKind] = set()

    def _run(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(sql), params or {})
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except SQLAlchemyError as exc:
            logger.error("database error: %s", exc.__class__.__name__)
            raise BackendUnavailable(f"database error: {exc.__class__.__name__}") from exc

    @staticmethod
    def _column(kind: EntityKind, field: str) -> str:
        if field not in COLUMNS[kind]:
            raise BackendUnavailable(f"column {field} not found in table {kind.value}")
        return f'"{field}"'

    @staticmethod
    def _select_list(kind: EntityKind) -> str:
        return ", ".join(f'"{c}"' for c in COLUMNS[kind])

    def _ensure_table(self, kind: EntityKind) -> None:
        if kind in self._ready:
            return
        columns = ",\n  ".join(f'"{c}" text' for c in COLUMNS[kind])
        self._run(f"create table if not exists {kind.value} (\n  _seq integer not null,\n  {columns}\n)")
        self._ready.add(kind)

    def _to_record(self, kind: EntityKind, row: dict[str, Any]) -> Record:
        return {c: row.get(c) for c in COLUMNS[kind]}

    def _first(self, kind: EntityKind, id_field: str, entity_id: str) -> dict[str, Any] | None:
        rows = self._run(
            f"select _seq, {self._select_list(kind)} from {kind.value} "
            f"where {self._column(kind, id_field)} = :id order by _seq limit 1",
            {"id": entity_id},
        )
        return rows[0] if rows else None

    def list_all(self, kind: EntityKind) -> list[Record]:
        self._ensure_table(kind)
        rows = self._run(f"select {self._select_list(kind)} from {kind.value} order by _seq")
        return [self._to_record(kind, row) for row in rows]

    def list_where(self, kind: EntityKind, filters: dict[str, Any]) -> list[Record]:
        if not filters:
            return self.list_all(kind)
        if any(field not in COLUMNS[kind] for field in filters):
            return []
        self._ensure_table(kind)
        clauses = []
        params: dict[str, Any] = {}
        for idx, (field, value) in enumerate(filters.items()):
            if value is None:
                clauses.append(f'"{field}" is null')
            else:
                clauses.append(f'"{field}" = :p{idx}')
                params[f"p{idx}"] = to_cell(value)
        rows = self._run(
            f"select {self._select_list(kind)} from {kind.value} where {' and '.join(clauses)} order by _seq",
            params,
        )
        return [self._to_record(kind, row) for row in rows]

    def add(self, kind: EntityKind, record: Record) -> Record:
        self._ensure_table(kind)
        seq = self._run(f"select coalesce(max(_seq), 0) + 1 as seq from {kind.value}")[0]["seq"]
        placeholders = ", ".join(f":c{idx}" for idx in range(len(COLUMNS[kind])))
        params = {f"c{idx}": value for idx, value in enumerate(to_row(kind, record))}
        params["seq"] = seq
        self._run(f"insert into {kind.value} (_seq, {self._select_list(kind)}) values (:seq, {placeholders})", params)
        return record

    def update(self, kind: EntityKind, id_field: str, entity_id: str, patch: Record) -> Record | None:
        self._ensure_table(kind)
        current = self._first(kind, id_field, entity_id)
        if current is None:
            return None
        merged = {**self._to_record(kind, current), **_strip_id(patch, id_field)}
        merged["updatedAt"] = next_timestamp(current.get("updatedAt"))
        assignments = ", ".join(f'"{c}" = :c{idx}' for idx, c in enumerate(COLUMNS[kind]))
        params = {f"c{idx}": value for idx, value in enumerate(to_row(kind, merged))}
        params["seq"] = current["_seq"]
        params["id"] = entity_id
        self._run(
            f"update {kind.value} set {assignments} where _seq = :seq and {self._column(kind, id_field)} = :id",
            params,
        )
        return merged

    def delete(self, kind: EntityKind, id_field: str, entity_id: str) -> bool:
        self._ensure_table(kind)
        current = self._first(kind, id_field, entity_id)
        if current is None:
            return False
        self._run(
            f"delete from {kind.value} where _seq = :seq and {self._column(kind, id_field)} = :id",
            {"seq": current["_seq"], "id": entity_id},
        )
        return True

    def initialize(self, kind: EntityKind) -> None:
        self._ensure_table(kind)

    def reset_headers(self, kind: EntityKind) -> None:
        # Column names live in the table definition.
        self._ensure_table(kind)


def get_repository(config: Settings = settings) -> Repository:
    if config.storage_backend == "postgres":
        return PostgresRepository(config.database_url)
    if config.storage_backend == "sheets":
        return SheetRowRepository(GoogleSheetsGrid(build_sheets_service(config), config.spreadsheet_id))
    return SheetRowRepository(InMemoryGrid())
