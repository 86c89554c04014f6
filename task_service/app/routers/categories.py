from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from ..core.auth import CurrentUser, get_current_user
from ..core.cache import RedisCache, get_cache
from ..core.database import get_db
from ..core.rate_limit import category_create_rate_limit
from ..schemas.category import (
    BulkCategoryDelete,
    BulkCategoryDeleteResult,
    CategoryCreate,
    CategoryLimit,
    CategoryResponse,
    CategoryStats,
    CategoryUpdate,
)
from ..services.category_service import CategoryService

router = APIRouter()


def get_category_service(
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
) -> CategoryService:
    return CategoryService(db, cache)


@router.post(
    "/",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(category_create_rate_limit)],
)
def create_category(
    data: CategoryCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    return service.create_category(current_user.user_id, data)


@router.get("/stats", response_model=CategoryStats)
def get_category_stats(
    current_user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    return service.get_category_stats(current_user.user_id)


@router.get("/check-limit", response_model=CategoryLimit)
def check_category_limit(
    current_user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    return service.check_category_limit(current_user.user_id)


@router.delete("/bulk", response_model=BulkCategoryDeleteResult)
def bulk_delete_categories(
    body: BulkCategoryDelete,
    current_user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    """Delete several categories at once; fails without changes if any cannot be deleted"""
    return service.bulk_delete_categories(current_user.user_id, body.category_ids)


@router.get("/{category_id}", response_model=CategoryResponse)
def get_category(
    category_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    return service.get_category_by_id(current_user.user_id, category_id)


@router.put("/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: int,
    data: CategoryUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    return service.update_category(current_user.user_id, category_id, data)


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    category_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: CategoryService = Depends(get_category_service),
):
    service.delete_category(current_user.user_id, category_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
