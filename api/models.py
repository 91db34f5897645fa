"""
API request and response models for RackGuard endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclass in inventory/models.py, which owns
the internal domain representation. Route handlers map between the two.

Every JSON body RackGuard emits has a top-level "success" flag. Failures
carry a short human-readable "error" plus optional extras (a redirect hint,
per-field errors, a longer message); absent extras are dropped from the
payload via model_dump(exclude_none=True).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from inventory.models import Machine

# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class FailureResponse(BaseModel):
    """Uniform failure body used by every gate and exception handler."""

    success: bool = False
    error: str
    message: Optional[str] = None
    redirect: Optional[str] = None
    errors: Optional[dict[str, str]] = None

    def payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class ApiInfo(BaseModel):
    name: str = "RackGuard API"
    version: str


class ApiIndexResponse(BaseModel):
    success: bool = True
    data: ApiInfo


# ---------------------------------------------------------------------------
# Machines
# ---------------------------------------------------------------------------


class MachineCreate(BaseModel):
    """Request body for POST /api/v1/machines and POST /ajax/machines."""

    model_config = ConfigDict(str_strip_whitespace=True)

    label: str = Field(min_length=1, max_length=255)
    ip_address: Optional[str] = Field(default=None, max_length=45)
    provider: Optional[str] = Field(default=None, max_length=255)
    price: int = Field(default=0, ge=0, description="Price in minor units (cents).")
    currency_code: str = Field(default="USD", pattern=r"^[A-Z]{3}$")
    due_date: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    notes: Optional[str] = Field(default=None, max_length=2000)
    is_hidden: bool = False

    def to_machine(self) -> Machine:
        return Machine(**self.model_dump())


class MachineResponse(BaseModel):
    id: int
    label: str
    ip_address: Optional[str] = None
    provider: Optional[str] = None
    price: int
    currency_code: str
    due_date: Optional[str] = None
    notes: Optional[str] = None
    is_hidden: bool
    created_at: str
    modified_at: str

    @classmethod
    def from_machine(cls, machine: Machine) -> "MachineResponse":
        return cls(**machine.__dict__)


class MachineListData(BaseModel):
    machines: list[MachineResponse]
    total: int


class MachineListResponse(BaseModel):
    success: bool = True
    data: MachineListData


class MachineDetailData(BaseModel):
    machine: MachineResponse


class MachineDetailResponse(BaseModel):
    success: bool = True
    data: MachineDetailData


class MachineCreatedData(BaseModel):
    message: str = "Machine created successfully"
    machine_id: int


class MachineCreatedResponse(BaseModel):
    success: bool = True
    data: MachineCreatedData


class MessageData(BaseModel):
    message: str


class MessageResponse(BaseModel):
    success: bool = True
    data: MessageData
