"""
inventory/models.py -- Domain dataclass for the RackGuard machine inventory.

Pure data container with zero logic. Persistence lives in inventory/store.py.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Machine:
    """A server (VPS, dedicated box, ...) the operator is paying for.

    price is stored in minor units (cents) to avoid float rounding.
    id is None before the record is written to the database.
    """

    label: str
    id: Optional[int] = None
    ip_address: Optional[str] = None
    provider: Optional[str] = None
    price: int = 0
    currency_code: str = "USD"
    due_date: Optional[str] = None  # YYYY-MM-DD
    notes: Optional[str] = None
    is_hidden: bool = False
    created_at: str = ""  # ISO 8601, set by store on insert
    modified_at: str = ""
