from datetime import datetime

from sqlmodel import Field, SQLModel


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # payment_failed, payment_conflict, order_cancelled, etc.
    order_id: str | None = Field(default=None, index=True)
    user_id: str | None = Field(default=None, index=True)
    detail: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
