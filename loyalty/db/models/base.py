from __future__ import annotations

from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import DeclarativeBase, Session


class Base(DeclarativeBase):
    pass


class AppendOnly:
    """Mixin for tables whose rows may be inserted but never changed or removed."""

    __append_only__ = True


def _is_append_only(instance: Any) -> bool:
    return bool(getattr(type(instance), "__append_only__", False))


@event.listens_for(Session, "before_flush")
def _reject_append_only_mutations(session: Session, flush_context: Any, instances: Any) -> None:
    for instance in session.dirty:
        if _is_append_only(instance) and session.is_modified(instance, include_collections=False):
            raise ValueError(f"{type(instance).__tablename__} is append-only")
    for instance in session.deleted:
        if _is_append_only(instance):
            raise ValueError(f"{type(instance).__tablename__} is append-only")
