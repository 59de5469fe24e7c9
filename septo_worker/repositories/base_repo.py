from __future__ import annotations

from typing import Generic, TypeVar, Type, Optional, Any
from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseRepository(Generic[T]):
    def __init__(self, session: Session, model: Type[T]) -> None:
        self.session = session
        self.model = model

    def create(self, obj: T, *, commit: bool = True) -> T:
        self.session.add(obj)
        if commit:
            self.session.commit()
            self.session.refresh(obj)
        return obj

    def get_by_id(self, id_: Any) -> Optional[T]:
        return self.session.get(self.model, id_)

    def _execute_conditional(self, stmt, *, commit: bool = True) -> int:
        """Run a guarded UPDATE and return how many rows it touched."""
        result = self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        if commit:
            self.session.commit()
        return result.rowcount or 0
