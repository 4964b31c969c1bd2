"""Base SQLModel class with a small chainable query manager."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from sqlmodel import SQLModel, col, select

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

ModelT = TypeVar("ModelT", bound="QueryModel")


class ModelQuery(Generic[ModelT]):
    """Immutable select builder bound to one model class."""

    def __init__(self, model: type[ModelT], statement: SelectOfScalar[ModelT] | None = None) -> None:
        self.model = model
        self.statement = statement if statement is not None else select(model)

    def _with(self, statement: SelectOfScalar[ModelT]) -> ModelQuery[ModelT]:
        return ModelQuery(self.model, statement)

    def filter(self, *criteria: Any) -> ModelQuery[ModelT]:
        return self._with(self.statement.where(*criteria))

    def filter_by(self, **values: Any) -> ModelQuery[ModelT]:
        return self._with(self.statement.filter_by(**values))

    def order_by(self, *clauses: Any) -> ModelQuery[ModelT]:
        return self._with(self.statement.order_by(*clauses))

    def limit(self, count: int) -> ModelQuery[ModelT]:
        return self._with(self.statement.limit(count))

    def for_update(self) -> ModelQuery[ModelT]:
        return self._with(self.statement.with_for_update())

    def fresh(self) -> ModelQuery[ModelT]:
        """Overwrite identity-map state with the row as currently stored."""
        return self._with(self.statement.execution_options(populate_existing=True))

    async def all(self, session: AsyncSession) -> list[ModelT]:
        return list(await session.exec(self.statement))

    async def first(self, session: AsyncSession) -> ModelT | None:
        return (await session.exec(self.statement.limit(1))).first()


class ModelManager(Generic[ModelT]):
    """Entry point for `Model.objects` query chains."""

    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def all(self) -> ModelQuery[ModelT]:
        return ModelQuery(self.model)

    def by_id(self, object_id: UUID) -> ModelQuery[ModelT]:
        return self.filter(col(self.model.id) == object_id)  # type: ignore[attr-defined]

    def filter(self, *criteria: Any) -> ModelQuery[ModelT]:
        return ModelQuery(self.model).filter(*criteria)

    def filter_by(self, **values: Any) -> ModelQuery[ModelT]:
        return ModelQuery(self.model).filter_by(**values)


class _ManagerDescriptor:
    def __get__(self, instance: object, owner: type[Any]) -> ModelManager[Any]:
        return ModelManager(owner)


class QueryModel(SQLModel):
    """SQLModel base exposing `Model.objects` for common lookups."""

    objects: ClassVar[_ManagerDescriptor] = _ManagerDescriptor()
