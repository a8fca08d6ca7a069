"""Products API router."""
from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session
from typing import List
from opentelemetry import trace

from auth import require_admin, get_user_id_from_token
from database import get_db
from dependencies import get_catalog_service, get_stock_ledger
from errors import StoreError, to_http_exception
from schemas import ProductCreate, ProductResponse, RestockRequest, VariantResponse
from services.catalog_service import CatalogService, product_to_dict
from services.stock_ledger import StockLedger

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=List[ProductResponse])
async def get_products(
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """List active products with their variants, prices and stock."""
    products = catalog.list_products(db)

    span = trace.get_current_span()
    span.set_attribute("product.count", len(products))

    return [product_to_dict(product) for product in products]


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int = Path(..., description="Product ID"),
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Get product details."""
    try:
        product = catalog.get_product(db, product_id)
    except StoreError as e:
        raise to_http_exception(e)

    trace.get_current_span().set_attribute("product.id", product_id)
    return product_to_dict(product)


@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(
    request: ProductCreate,
    db: Session = Depends(get_db),
    token: str = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Create a product with its variants - admin only."""
    try:
        product = catalog.create_product(db, request.model_dump())
    except StoreError as e:
        raise to_http_exception(e)
    return product_to_dict(product)


@router.post("/variants/{variant_id}/restock", response_model=VariantResponse)
async def restock_variant(
    request: RestockRequest,
    variant_id: int = Path(..., description="Variant ID"),
    db: Session = Depends(get_db),
    token: str = Depends(require_admin),
    stock_ledger: StockLedger = Depends(get_stock_ledger)
):
    """Add stock to a variant - admin only."""
    try:
        variant = stock_ledger.restock(db, variant_id, request.quantity)
    except StoreError as e:
        raise to_http_exception(e)

    trace.get_current_span().set_attribute("admin.id", get_user_id_from_token(token))
    data = product_to_dict(variant.product)
    return next(v for v in data["variants"] if v["id"] == variant.id)
