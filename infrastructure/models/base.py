"""
数据库模型基类（SQLAlchemy 2.0 风格）

Tables are either owned by this service (settlements, webhook_events) or
mapped read-only from the marketplace database. Only owned tables are created
by this service or by its migrations.
"""
from datetime import datetime, timezone

from sqlalchemy import Table
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class ExternalTable:
    """Mixin for tables whose schema belongs to the marketplace application."""

    __table_args__ = {"info": {"external": True}}


def is_owned(table: Table) -> bool:
    return not table.info.get("external")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# 元数据对象用于数据库迁移
metadata = Base.metadata
