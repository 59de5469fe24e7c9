from sqlalchemy import DateTime
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql.expression import FunctionElement


class Base(DeclarativeBase):
    pass


class utc_now(FunctionElement):
    """Server-side current time as naive UTC, whatever the session timezone."""

    type = DateTime()
    inherit_cache = True


@compiles(utc_now)
def _utc_now_default(element, compiler, **kw):
    # SQLite's CURRENT_TIMESTAMP is already UTC.
    return "CURRENT_TIMESTAMP"


@compiles(utc_now, "postgresql")
def _utc_now_postgresql(element, compiler, **kw):
    return "(now() at time zone 'utc')"
