from tortoise import fields, models
import uuid


# -------- Users --------
class User(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    username = fields.CharField(max_length=50, unique=True, index=True)
    email = fields.CharField(max_length=100, unique=True, index=True)
    hashed_password = fields.CharField(max_length=128)
    disabled = fields.BooleanField(default=False)
    role = fields.CharField(max_length=16, default="user", index=True)  # admin | editor | user

    class Meta:
        table = "users"

    def __str__(self) -> str:
        return f"{self.username} ({self.email})"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_editor(self) -> bool:
        return self.role in ("admin", "editor")


# -------- Rates --------
class YearlyRate(models.Model):
    """Standard monthly rate per panel for a calendar year."""
    year = fields.IntField(pk=True)
    importe_cents = fields.IntField()
    updated_at = fields.DatetimeField(auto_now=True)
    updated_by = fields.CharField(max_length=100, null=True)

    class Meta:
        table = "yearly_rates"

    def __str__(self) -> str:
        return f"{self.year}: {self.importe_cents}c"


# -------- Panels --------
class Panel(models.Model):
    id = fields.CharField(pk=True, max_length=200)  # "{municipio}_{codigo}"
    codigo = fields.CharField(max_length=64, unique=True, index=True)
    municipio = fields.CharField(max_length=120, index=True)
    ubicacion = fields.CharField(max_length=200, null=True)
    tipo = fields.CharField(max_length=32, default="PIV")
    estado_actual = fields.CharField(max_length=16, default="ACTIVO", index=True)
    tarifa_actual_cents = fields.IntField(null=True)
    fecha_alta = fields.DateField(null=True)
    created_by = fields.CharField(max_length=100, null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True, index=True)

    events: fields.ReverseRelation["PanelEvent"]
    billing: fields.ReverseRelation["BillingMonthlyPanel"]

    class Meta:
        table = "panels"

    def __str__(self) -> str:
        return self.codigo


class PanelEvent(models.Model):
    """
    One billing-relevant action on a panel. Append-only: deletion flips
    is_deleted and stamps deleted_at/deleted_by.
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)  # doubles as idempotency key
    panel = fields.ForeignKeyField("models.Panel", related_name="events", on_delete=fields.CASCADE, index=True)
    action = fields.CharField(max_length=32, index=True)
    effective_date = fields.DateField(index=True)
    month_key = fields.CharField(max_length=7, index=True)

    dias_facturables = fields.IntField(default=0)
    importe_cents = fields.IntField(default=0)
    motivo = fields.TextField(null=True)
    snapshot_before = fields.JSONField(null=True)
    snapshot_after = fields.JSONField(null=True)

    # INTERVENCION only
    tipo_intervencion = fields.CharField(max_length=32, null=True)
    concepto = fields.CharField(max_length=500, null=True)
    evidencia_url = fields.CharField(max_length=500, null=True)

    is_deleted = fields.BooleanField(default=False, index=True)
    deleted_at = fields.DatetimeField(null=True)
    deleted_by = fields.CharField(max_length=100, null=True)

    created_by = fields.CharField(max_length=100, null=True)
    updated_by = fields.CharField(max_length=100, null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "panel_events"

    def __str__(self) -> str:
        return f"{self.action}@{self.effective_date} ({self.panel_id})"


# -------- Derived billing --------
class BillingMonthlyPanel(models.Model):
    """Per panel, per month. Always overwritten from the event history."""
    id = fields.CharField(pk=True, max_length=220)  # "{panel_id}_{month_key}"
    panel = fields.ForeignKeyField("models.Panel", related_name="billing", on_delete=fields.CASCADE, index=True)
    month_key = fields.CharField(max_length=7, index=True)
    codigo = fields.CharField(max_length=64, index=True)
    municipio = fields.CharField(max_length=120, null=True, index=True)
    total_dias_facturables = fields.IntField(default=0)
    total_importe_cents = fields.IntField(default=0)
    estado_al_cierre = fields.CharField(max_length=16, default="ACTIVO")
    tarifa_aplicada_cents = fields.IntField(default=0)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "billing_monthly_panel"
        unique_together = ("panel", "month_key")

    def __str__(self) -> str:
        return self.id


class BillingSummary(models.Model):
    """Per month rollup. Recomputed by full scan; only is_locked is owned here."""
    month_key = fields.CharField(pk=True, max_length=7)
    total_importe_mes_cents = fields.IntField(default=0)
    total_paneles_facturables = fields.IntField(default=0)
    paneles_activos = fields.IntField(default=0)
    paneles_parciales = fields.IntField(default=0)
    total_eventos = fields.IntField(default=0)
    is_locked = fields.BooleanField(default=False, index=True)
    locked_at = fields.DatetimeField(null=True)
    locked_by = fields.CharField(max_length=100, null=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "billing_summary"

    def __str__(self) -> str:
        return f"{self.month_key}{' (locked)' if self.is_locked else ''}"


# -------- Audit --------
class AuditLog(models.Model):
    id = fields.IntField(pk=True)
    action = fields.CharField(max_length=64, index=True)
    actor = fields.CharField(max_length=100, null=True)
    payload = fields.JSONField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True, index=True)

    class Meta:
        table = "audit_logs"
