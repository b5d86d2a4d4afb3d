"""Marketplace template (certificate, plan, form). Read-only here: price and availability lookup."""
import uuid
from datetime import datetime
from decimal import Decimal

from sqlmodel import Field, SQLModel


class Template(SQLModel, table=True):
    __tablename__ = "templates"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    name: str
    type: str = "interactive"  # "ready" | "interactive"
    price: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    is_free: bool = False
    is_active: bool = Field(default=True, index=True)
    created_at: datetime | None = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)
