"""
inventory/store.py -- SQLAlchemy-backed persistence for the machine inventory.

Uses SQLAlchemy Core (not ORM) so the dataclass in inventory/models.py stays
the authoritative domain representation.

Pattern: Repository + Data Mapper. MachineStore is the repository;
_row_to_machine is the mapper. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = MachineStore()                                # SQLite default
    store = MachineStore("postgresql://user:pw@host/db")  # PostgreSQL
    machine_id = store.create_machine(Machine(label="fra-vps-01"))
    store.list_machines()
    store.close()
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from inventory.models import Machine

_DEFAULT_DB_URL = "sqlite:///rackguard_inventory.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_machines = Table(
    "machines",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("label", String(255), nullable=False),
    Column("ip_address", String(45)),
    Column("provider", String(255)),
    Column("price", Integer, nullable=False, server_default="0"),
    Column("currency_code", String(3), nullable=False, server_default="USD"),
    Column("due_date", String(10)),  # YYYY-MM-DD
    Column("notes", Text),
    Column("is_hidden", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("modified_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MachineStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def create_machine(self, machine: Machine) -> int:
        """Insert a machine and return its assigned ID."""
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _machines.insert().values(
                    label=machine.label,
                    ip_address=machine.ip_address,
                    provider=machine.provider,
                    price=machine.price,
                    currency_code=machine.currency_code,
                    due_date=machine.due_date,
                    notes=machine.notes,
                    is_hidden=1 if machine.is_hidden else 0,
                    created_at=now,
                    modified_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_machine(self, machine_id: int) -> Optional[Machine]:
        with self.engine.connect() as conn:
            row = conn.execute(_machines.select().where(_machines.c.id == machine_id)).fetchone()
        return _row_to_machine(row) if row is not None else None

    def list_machines(self, include_hidden: bool = False) -> list[Machine]:
        """Return machines ordered by label. Hidden machines only on request."""
        query = _machines.select().order_by(_machines.c.label)
        if not include_hidden:
            query = query.where(_machines.c.is_hidden == 0)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_machine(r) for r in rows]

    def delete_machine(self, machine_id: int) -> bool:
        """Delete a machine. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_machines.delete().where(_machines.c.id == machine_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_machine(row) -> Machine:
    return Machine(
        id=row.id,
        label=row.label,
        ip_address=row.ip_address,
        provider=row.provider,
        price=row.price,
        currency_code=row.currency_code,
        due_date=row.due_date,
        notes=row.notes,
        is_hidden=bool(row.is_hidden),
        created_at=row.created_at,
        modified_at=row.modified_at,
    )
