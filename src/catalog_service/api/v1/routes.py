import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ...cache.middleware import ResponseCache
from ...core.exceptions import InvalidInputError
from ...repositories.product import CachedProductRepository
from ...schemas import (
    MAX_PAGE,
    MAX_PAGE_SIZE,
    Pagination,
    PriceRange,
    Product,
    ProductCount,
    ProductCreate,
    ProductFilter,
    ProductPage,
    ProductUpdate,
    WishlistToggle,
)

router = APIRouter()


def get_repository(request: Request) -> CachedProductRepository:
    return request.app.state.repository


def get_response_cache(request: Request) -> ResponseCache:
    return request.app.state.response_cache


def build_filter(
    category: Optional[str],
    search: Optional[str],
    is_active: Optional[bool],
    is_wishlist_status: Optional[bool],
    min_price: Optional[float],
    max_price: Optional[float],
) -> ProductFilter:
    if (min_price is None) != (max_price is None):
        raise InvalidInputError("min_price and max_price must be given together")
    try:
        price_range = None
        if min_price is not None:
            price_range = PriceRange(min=min_price, max=max_price)
        return ProductFilter(
            category=category,
            search=search,
            is_active=is_active,
            is_wishlist_status=is_wishlist_status,
            price_range=price_range,
        )
    except ValidationError as e:
        raise InvalidInputError(f"Invalid product filter: {e}") from e


# Endpoints for Product
@router.post("/products", response_model=Product, status_code=status.HTTP_201_CREATED)
async def create_product(
    product: ProductCreate,
    repo: CachedProductRepository = Depends(get_repository),
):
    return await repo.create(product)


@router.get("/products", response_model=ProductPage)
async def read_products(
    request: Request,
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    category: Optional[str] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_wishlist_status: Optional[bool] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    repo: CachedProductRepository = Depends(get_repository),
    response_cache: ResponseCache = Depends(get_response_cache),
):
    cached = await response_cache.before(request)
    if cached is not None:
        return cached

    product_filter = build_filter(category, search, is_active, is_wishlist_status, min_price, max_price)
    pagination = Pagination(page=page, limit=limit)

    total = await repo.count(product_filter)
    items = await repo.find_all(product_filter, pagination)
    body = ProductPage(
        items=items,
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit),
    ).model_dump(mode="json")

    await response_cache.after(request, body)
    return body


@router.get("/products/count", response_model=ProductCount)
async def count_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_wishlist_status: Optional[bool] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    repo: CachedProductRepository = Depends(get_repository),
):
    product_filter = build_filter(category, search, is_active, is_wishlist_status, min_price, max_price)
    return ProductCount(count=await repo.count(product_filter))


@router.get("/products/{product_id}", response_model=Product)
async def read_product(product_id: str, repo: CachedProductRepository = Depends(get_repository)):
    product = await repo.find_by_id(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.patch("/products/{product_id}", response_model=Product)
async def update_product(
    product_id: str,
    changes: ProductUpdate,
    repo: CachedProductRepository = Depends(get_repository),
):
    return await repo.update(product_id, changes)


@router.patch("/products/{product_id}/wishlist", response_model=Product)
async def toggle_wishlist(
    product_id: str,
    payload: WishlistToggle,
    repo: CachedProductRepository = Depends(get_repository),
):
    return await repo.toggle_wishlist(product_id, payload.is_wishlist_status)


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(product_id: str, repo: CachedProductRepository = Depends(get_repository)):
    if not await repo.delete(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/health")
async def health(repo: CachedProductRepository = Depends(get_repository)):
    store_up = await repo.store.ping()
    cache_up = await repo.cache.ping()
    if not store_up:
        service_status = "unhealthy"
    elif not cache_up:
        service_status = "degraded"
    else:
        service_status = "healthy"

    body = {
        "status": service_status,
        "store": "up" if store_up else "down",
        "cache": "up" if cache_up else "down",
        "cache_metrics": repo.cache.metrics.snapshot(),
    }
    code = status.HTTP_200_OK if store_up else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=body)
