import datetime as dt
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .barcodes import EntityKind
from .models import Priority, RepairStatus, UserRole


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    username: str
    password: str


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=128)
    password: str = Field(min_length=6)
    name: str = Field(default="", max_length=128)
    role: UserRole = UserRole.WORKER


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=128)
    role: UserRole | None = None
    active: bool | None = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    username: str
    name: str
    role: str
    active: bool


# ===== Entity records =====
class CustomerIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    phone: str = Field(default="", max_length=32)
    email: str | None = Field(default=None, max_length=128)


class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    name: str
    phone: str
    email: str | None = None
    registered_by: str | None = None
    created_at: dt.datetime


class CustomerStats(CustomerOut):
    equipment_count: int = 0
    repair_count: int = 0
    active_repairs: int = 0


class EquipmentIn(BaseModel):
    customer_id: str = Field(min_length=1)
    brand: str = Field(min_length=1, max_length=64)
    model: str = Field(min_length=1, max_length=64)
    year: int | None = Field(default=None, ge=1970, le=2100)
    serial_number: str | None = Field(default=None, max_length=64)
    description: str | None = None


class EquipmentUpdate(BaseModel):
    customer_id: str | None = Field(default=None, min_length=1)
    brand: str | None = Field(default=None, min_length=1, max_length=64)
    model: str | None = Field(default=None, min_length=1, max_length=64)
    year: int | None = Field(default=None, ge=1970, le=2100)
    serial_number: str | None = Field(default=None, max_length=64)
    description: str | None = None


class EquipmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    customer_id: str
    brand: str
    model: str
    year: int | None = None
    serial_number: str | None = None
    description: str | None = None
    registered_by: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class RepairIn(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    equipment_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=128)
    description: str = ""
    priority: Priority = Priority.MEDIUM
    expected_completion_date: dt.datetime | None = None
    cost: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class RepairUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = None
    status: RepairStatus | None = None
    priority: Priority | None = None
    expected_completion_date: dt.datetime | None = None
    cost: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class RepairOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    customer_id: str
    equipment_id: str
    title: str
    description: str
    status: str
    priority: str
    entry_date: dt.datetime
    expected_completion_date: dt.datetime | None = None
    completion_date: dt.datetime | None = None
    cost: Decimal | None = None
    notes: str | None = None
    registered_by: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class PartIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    brand: str = Field(default="", max_length=64)
    model: str = Field(default="", max_length=64)
    category: str = Field(default="", max_length=64)
    compatibility: list[str] = Field(default_factory=list)
    quantity: int = Field(default=0, ge=0)
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    location: str | None = Field(default=None, max_length=64)
    notes: str | None = None


class PartUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    category: str | None = Field(default=None, max_length=64)
    compatibility: list[str] | None = None
    quantity: int | None = Field(default=None, ge=0)
    cost: Decimal | None = Field(default=None, ge=0)
    location: str | None = Field(default=None, max_length=64)
    notes: str | None = None


class PartOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    name: str
    brand: str
    model: str
    category: str
    compatibility: list[str]
    quantity: int
    cost: Decimal
    location: str | None = None
    notes: str | None = None
    registered_by: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class RepairDetail(RepairOut):
    qr_code: str
    customer: CustomerOut | None = None
    equipment: EquipmentOut | None = None


class PartDetail(PartOut):
    qr_code: str


class EquipmentDetail(EquipmentOut):
    qr_code: str
    customer: CustomerOut | None = None
    repairs: list[RepairOut] = Field(default_factory=list)
    repair_count: int = 0
    active_repairs_count: int = 0


# ===== QR scanning =====
class ScanRequest(BaseModel):
    code: str = Field(min_length=1, max_length=512)


class NavigationOut(BaseModel):
    screen: str
    kind: EntityKind
    id: str
    payload: dict[str, Any]


class ScanSessionOut(BaseModel):
    id: str
    state: str


class ScanSessionResult(BaseModel):
    id: str
    state: str
    target: NavigationOut | None = None
    error: dict[str, Any] | None = None


class CodeOut(BaseModel):
    kind: EntityKind
    id: str
    code: str


# ===== Labels =====
LabelSize = Literal["small", "medium", "large", "xlarge"]


class LabelPayload(BaseModel):
    kind: EntityKind
    id: str = Field(min_length=1)
    size: LabelSize = "medium"
    copies: int = Field(ge=1, le=10, default=1)


class LabelOut(BaseModel):
    kind: EntityKind
    id: str
    code: str
    size: LabelSize
    copies: int
    mode: str
    status: str
    zpl: str | None = None
