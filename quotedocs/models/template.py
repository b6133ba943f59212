"""Quotation template ORM model: versioned, soft-deletable document layouts."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from quotedocs.database import Base


def new_template_id() -> str:
    return f"tpl_{uuid.uuid4().hex[:12]}"


class QuotationTemplate(Base):
    __tablename__ = "quotation_templates"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_template_id)
    name: Mapped[str] = mapped_column(String(128))
    description: Mapped[str] = mapped_column(Text, default="")
    theme: Mapped[str] = mapped_column(String(32), default="MODERN")
    category: Mapped[str] = mapped_column(String(64), default="quotation")
    scope: Mapped[str] = mapped_column(String(64), default="quotation", index=True)
    elements: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of elements
    settings: Mapped[str] = mapped_column(Text, default="{}")  # JSON page layout
    branding: Mapped[str] = mapped_column(Text, default="{}")  # JSON colour/logo overrides
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
