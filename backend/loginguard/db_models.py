from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from loginguard.db import Base


class LoginFailure(Base):
    __tablename__ = "login_failures"

    ip: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    hits: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
