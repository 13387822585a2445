from typing import Any, Dict, Generic, Optional, Type, TypeVar, Union
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from vault.models.base import Base
from vault.core.exceptions import NotFoundError

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)

class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def get(self, db: AsyncSession, id: Any, *, raise_if_not_found: bool = True) -> Optional[ModelType]:
        """Get a single record by ID (not soft deleted)"""
        result = await db.execute(
            select(self.model).where(
                and_(self.model.id == id, self.model.is_deleted == False)
            )
        )
        obj = result.scalar_one_or_none()
        
        if raise_if_not_found and obj is None:
            raise NotFoundError(f"{self.model.__name__}")
        
        return obj

    async def get_by_user_id(self, db: AsyncSession, id: Any, user_id: Any, *, raise_if_not_found: bool = True) -> Optional[ModelType]:
        """Get a single record by ID and user_id (not soft deleted)"""
        result = await db.execute(
            select(self.model).where(
                and_(
                    self.model.id == id, 
                    self.model.user_id == user_id,
                    self.model.is_deleted == False
                )
            )
        )
        obj = result.scalar_one_or_none()
        
        if raise_if_not_found and obj is None:
            raise NotFoundError(f"{self.model.__name__}")
        
        return obj

    async def create(self, db: AsyncSession, *, obj_in: CreateSchemaType) -> ModelType:
        """Create a new record"""
        return await self.create_with_extra(db, obj_in=obj_in, extra_data={})

    async def create_with_extra(self, db: AsyncSession, *, obj_in: CreateSchemaType, extra_data: Dict[str, Any]) -> ModelType:
        """Create a new record with additional fields"""
        # Use model_dump() to preserve Python types (date, datetime, etc.)
        if hasattr(obj_in, 'model_dump'):
            obj_in_data = obj_in.model_dump(exclude_unset=True)
        else:
            obj_in_data = jsonable_encoder(obj_in)
        
        obj_in_data.update(extra_data)
        db_obj = self.model(**obj_in_data)
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def update(
        self,
        db: AsyncSession,
        *,
        db_obj: ModelType,
        obj_in: Union[UpdateSchemaType, Dict[str, Any]]
    ) -> ModelType:
        """Update a record"""
        if isinstance(obj_in, dict):
            update_data = obj_in
        else:
            update_data = obj_in.model_dump(exclude_unset=True)
        
        for field, value in update_data.items():
            if hasattr(db_obj, field):
                setattr(db_obj, field, value)
        
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj
