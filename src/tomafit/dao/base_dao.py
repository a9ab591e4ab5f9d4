from typing import Type, TypeVar, Generic, Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import inspect, and_, select, update
from sqlalchemy.sql.selectable import Select
from tomafit.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

class BaseDao(Generic[ModelType]):
    def __init__(self, model_class: Type[ModelType], db_session: AsyncSession):
        self.model: Type[ModelType] = model_class
        self.db_session: AsyncSession = db_session
        primary_keys = inspect(model_class).primary_key
        if not primary_keys:
            raise ValueError(f"Model {model_class.__name__} does not have a primary key.")
        self.pk: str = primary_keys[0].name

    # ==============================================================================
    # 1. 实体/对象方法 (Object Methods)
    # ==============================================================================

    async def get_list(
        self,
        where: Optional[dict | list] = None,
        order: Optional[list] = None,
    ) -> list[ModelType]:
        stmt = self._quick_query(where=where, order=order)
        executed = await self.db_session.execute(stmt)
        return list(executed.scalars().all())

    async def get_one(
        self,
        where: Optional[dict | list] = None,
        order: Optional[list] = None,
        for_update: bool = False
    ) -> Optional[ModelType]:
        stmt = self._quick_query(where=where, order=order)
        if for_update:
            stmt = stmt.with_for_update()
        # expire_on_commit=False 时会话里可能留有旧对象，这里总是以数据库为准
        stmt = stmt.execution_options(populate_existing=True)
        executed = await self.db_session.execute(stmt)
        return executed.scalars().first()

    async def get_by_pk(self, pk_value: Any, for_update: bool = False) -> Optional[ModelType]:
        return await self.get_one(where={self.pk: pk_value}, for_update=for_update)

    async def add(self, instance: ModelType, auto_flush: bool = True) -> ModelType:
        self.db_session.add(instance)
        if auto_flush:
            await self.db_session.flush()
            await self.db_session.refresh(instance)
        return instance

    # ==============================================================================
    # 2. 数据/批量方法 (Data/Bulk Methods)
    # ==============================================================================

    async def update_where(self, where: dict | list, values: dict) -> int:
        """
        条件更新，返回受影响行数。
        调用方依赖行数判断是否真正发生了状态迁移。
        """
        if not where or not values:
            return 0
        conditions = self._where_format(where)
        stmt = (
            update(self.model)
            .where(*conditions)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        executed = await self.db_session.execute(stmt)
        return executed.rowcount

    # ==============================================================================
    # 3. 查询构建辅助方法 (Query Building Helpers)
    # ==============================================================================

    def _quick_query(self, where: Optional[dict | list] = None, order: Optional[list] = None) -> Select:
        stmt = select(self.model)

        if where is not None:
            stmt = stmt.filter(*self._where_format(where))

        if order is not None:
            stmt = stmt.order_by(*order)

        return stmt

    def _where_format(self, conditions: list | dict) -> list:
        """dict 为字段等值条件；list 为 SQLAlchemy 表达式。多个条件以 AND 合并。"""
        if not conditions:
            return []

        if isinstance(conditions, dict):
            processed_conditions = [getattr(self.model, field) == value for field, value in conditions.items()]
        else:
            processed_conditions = list(conditions)
        if len(processed_conditions) > 1:
            processed_conditions = [and_(*processed_conditions)]
        return processed_conditions
