# API Router for Document Categories
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from document_compliance_service.app.models import DocumentCategoryDB, RetentionPolicy
from document_compliance_service.app.service.commands import handlers as command_handlers
from document_compliance_service.app.service.commands import models as command_models
from document_compliance_service.app.service.exceptions import DataValidationError, EntityNotFoundError
from document_compliance_service.infrastructure.database import category_store
from document_compliance_service.infrastructure.database.connection import get_db

logger = logging.getLogger(__name__)
router = APIRouter()


class CreateCategoryRequest(BaseModel):
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    created_by: str

class UpdateCategoryRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None


@router.get("/categories", response_model=List[DocumentCategoryDB], tags=["Categories"])
async def list_categories_api(
    retention: RetentionPolicy = RetentionPolicy.ACTIVE_ONLY,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        return await category_store.list_categories(db, retention)
    except Exception as e:
        logger.error(f"Error listing categories: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list categories.")

@router.get("/categories/{category_id}", response_model=DocumentCategoryDB, tags=["Categories"])
async def get_category_api(category_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    category = await category_store.get_category_by_id(db, category_id)
    if category is None:
        raise HTTPException(status_code=404, detail=f"Category ID {category_id} not found.")
    return category

@router.post("/categories", response_model=DocumentCategoryDB, status_code=201, tags=["Categories"])
async def create_category_api(
    request_data: CreateCategoryRequest = Body(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        cmd = command_models.CreateCategoryCommand(**request_data.model_dump())
        return await command_handlers.handle_create_category_command(db, cmd)
    except DataValidationError as e:
        logger.warning(f"Validation error creating category: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error creating category: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create category.")

@router.patch("/categories/{category_id}", response_model=DocumentCategoryDB, tags=["Categories"])
async def update_category_api(
    category_id: str,
    request_data: UpdateCategoryRequest = Body(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        cmd = command_models.UpdateCategoryCommand(
            category_id=category_id, **request_data.model_dump(exclude_unset=True)
        )
        return await command_handlers.handle_update_category_command(db, cmd)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DataValidationError as e:
        logger.warning(f"Validation error updating category {category_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error updating category {category_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update category.")

@router.delete("/categories/{category_id}", response_model=DocumentCategoryDB, tags=["Categories"])
async def deactivate_category_api(
    category_id: str,
    deactivated_by: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        cmd = command_models.DeactivateCategoryCommand(category_id=category_id, deactivated_by=deactivated_by)
        return await command_handlers.handle_deactivate_category_command(db, cmd)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error deactivating category {category_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to deactivate category.")
