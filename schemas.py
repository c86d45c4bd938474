import uuid
from datetime import datetime, date
from typing import Optional, Literal, Dict, List, Any
from pydantic import BaseModel, EmailStr, ConfigDict, Field, computed_field


# =========================
# Auth
# =========================
class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


Role = Literal["admin", "editor", "user"]


class UserCreate(BaseModel):
    username: str
    email: EmailStr
    password: str = Field(min_length=8)
    role: Role = "user"


class UserRoleUpdate(BaseModel):
    role: Role


class UserRead(BaseModel):
    id: uuid.UUID
    username: str
    email: EmailStr
    disabled: bool
    role: str
    is_admin: bool
    model_config = ConfigDict(from_attributes=True)


# =========================
# Panels
# =========================
class PanelCreate(BaseModel):
    codigo: str = Field(min_length=1, max_length=64)
    municipio: str = Field(min_length=1, max_length=120)
    fecha_alta: date
    ubicacion: Optional[str] = None
    tipo: str = "PIV"


class PanelDelete(BaseModel):
    confirm_code: str


class PanelRead(BaseModel):
    id: str
    codigo: str
    municipio: str
    ubicacion: Optional[str] = None
    tipo: str
    estado_actual: str
    tarifa_actual_cents: Optional[int] = None
    fecha_alta: Optional[date] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def tarifa_actual(self) -> Optional[float]:
        return None if self.tarifa_actual_cents is None else round(self.tarifa_actual_cents / 100, 2)


# =========================
# Panel events
# =========================
class PanelSnapshot(BaseModel):
    """Panel data captured around an event; other keys are kept as sent."""
    model_config = ConfigDict(extra="allow")

    tarifaBaseMes: Optional[float] = Field(None, gt=0, strict=True, allow_inf_nan=False)
    importeAjuste: Optional[float] = Field(None, strict=True, allow_inf_nan=False)


class PanelEventCreate(BaseModel):
    panel_id: str
    action: str
    effective_date: date
    month_key: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}$")
    motivo: Optional[str] = None
    snapshot_before: Optional[PanelSnapshot] = None
    snapshot_after: Optional[PanelSnapshot] = None


class IntervencionCreate(BaseModel):
    panel_id: str
    effective_date: date
    tipo_intervencion: str
    concepto: str = Field(min_length=1, max_length=500)
    importe: float = Field(allow_inf_nan=False)
    evidencia_url: Optional[str] = None


class PanelEventUpdate(BaseModel):
    motivo: Optional[str] = None
    dias_facturables: Optional[int] = Field(None, ge=0, le=31)
    importe: Optional[float] = Field(None, allow_inf_nan=False)
    snapshot_before: Optional[PanelSnapshot] = None
    snapshot_after: Optional[PanelSnapshot] = None


class PanelEventsBulkDelete(BaseModel):
    panel_id: str
    month_key: str = Field(pattern=r"^\d{4}-\d{2}$")


class PanelEventRead(BaseModel):
    id: uuid.UUID
    panel_id: str
    action: str
    effective_date: date
    month_key: str
    dias_facturables: int
    importe_cents: int
    motivo: Optional[str] = None
    snapshot_before: Optional[Dict[str, Any]] = None
    snapshot_after: Optional[Dict[str, Any]] = None
    tipo_intervencion: Optional[str] = None
    concepto: Optional[str] = None
    evidencia_url: Optional[str] = None
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def importe(self) -> float:
        return round(self.importe_cents / 100, 2)


# =========================
# Billing
# =========================
class BillingMonthlyPanelRead(BaseModel):
    id: str
    panel_id: str
    month_key: str
    codigo: str
    municipio: Optional[str] = None
    total_dias_facturables: int
    total_importe_cents: int
    estado_al_cierre: str
    tarifa_aplicada_cents: int
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def total_importe(self) -> float:
        return round(self.total_importe_cents / 100, 2)

    @computed_field
    @property
    def tarifa_aplicada(self) -> float:
        return round(self.tarifa_aplicada_cents / 100, 2)


class BillingSummaryRead(BaseModel):
    month_key: str
    total_importe_mes_cents: int
    total_paneles_facturables: int
    paneles_activos: int
    paneles_parciales: int
    total_eventos: int
    is_locked: bool
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def id(self) -> str:
        # React-Admin needs an `id` on every record
        return self.month_key

    @computed_field
    @property
    def total_importe_mes(self) -> float:
        return round(self.total_importe_mes_cents / 100, 2)


# =========================
# Months
# =========================
class MonthLockUpdate(BaseModel):
    is_locked: bool


class BaseMonthRow(BaseModel):
    codigo: str = Field(min_length=1)
    municipio: str = Field(min_length=1)
    tarifa_base_mes: float = Field(gt=0)
    fecha_alta: date
    dias_facturables: int = Field(ge=0, le=31)
    importe_a_facturar: float = Field(ge=0)
    ubicacion: Optional[str] = None
    tipo: Optional[str] = None


class BaseMonthImport(BaseModel):
    month_key: str = Field(pattern=r"^\d{4}-\d{2}$")
    panels: List[BaseMonthRow] = Field(min_length=1)


# =========================
# Rates
# =========================
class YearlyRateRead(BaseModel):
    year: int
    importe_cents: int
    updated_at: datetime
    updated_by: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def id(self) -> int:
        return self.year

    @computed_field
    @property
    def importe(self) -> float:
        return round(self.importe_cents / 100, 2)


class YearlyRateUpdate(BaseModel):
    importe: float = Field(gt=0)


# =========================
# Admin tasks
# =========================
class RecalculateRequest(BaseModel):
    panel_id: str
    month_key: str = Field(pattern=r"^\d{4}-\d{2}$")
