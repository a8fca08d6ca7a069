"""Product catalog service."""
import logging
from typing import Any, Dict, List

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import NotFoundError, ValidationError
from models import Product, Variant
from pricing import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)


class CatalogService:
    """Service for reading and creating catalog products."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def list_products(self, db: Session) -> List[Product]:
        """Active products, oldest first."""
        with self.tracer.start_as_current_span("db.query.list_products") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")
            products = list(db.execute(
                select(Product).where(Product.is_active.is_(True)).order_by(Product.id)
            ).scalars())
            db_span.set_attribute("db.rows_returned", len(products))
            return products

    def get_product(self, db: Session, product_id: int) -> Product:
        """
        Load an active product.

        Raises:
            NotFoundError: If the product does not exist
        """
        product = db.get(Product, product_id)
        if product is None or not product.is_active:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def create_product(self, db: Session, data: Dict[str, Any]) -> Product:
        """
        Create a product with its variants.

        Raises:
            ValidationError: If a SKU is duplicated
        """
        skus = [variant["sku"] for variant in data["variants"]]
        if len(set(skus)) != len(skus):
            raise ValidationError("Variant SKUs must be unique")

        product = Product(
            name=data["name"],
            description=data.get("description", ""),
            category=data.get("category", "General"),
            base_price_minor=to_minor_units(data["base_price"]),
            variants=[
                Variant(
                    sku=variant["sku"],
                    type=variant["type"],
                    size=variant["size"],
                    fragrance=variant["fragrance"],
                    price_adjustment_minor=to_minor_units(variant.get("price_adjustment", 0)),
                    stock=variant.get("stock", 0),
                    sales_count=0,
                    version=0,
                )
                for variant in data["variants"]
            ],
        )
        db.add(product)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ValidationError("A variant with one of these SKUs already exists")

        logger.info("Product created", extra={
            "product_id": product.id,
            "product_name": product.name,
            "variant_count": len(product.variants)
        })
        return product


def product_to_dict(product: Product) -> Dict[str, Any]:
    """Serialize a product for API responses."""
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description or "",
        "category": product.category,
        "base_price": from_minor_units(product.base_price_minor),
        "total_stock": sum(variant.stock for variant in product.variants),
        "variants": [
            {
                "id": variant.id,
                "sku": variant.sku,
                "type": variant.type,
                "size": variant.size,
                "fragrance": variant.fragrance,
                "price": from_minor_units(product.base_price_minor + variant.price_adjustment_minor),
                "price_adjustment": from_minor_units(variant.price_adjustment_minor),
                "stock": variant.stock,
                "sales_count": variant.sales_count,
                "last_restocked_at": variant.last_restocked_at,
            }
            for variant in product.variants
        ],
    }
