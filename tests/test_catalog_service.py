"""
Tests for the product catalog.
"""
from decimal import Decimal

import pytest

from errors import NotFoundError, ValidationError
from models import Product
from services.catalog_service import CatalogService, product_to_dict


@pytest.fixture
def catalog_service():
    return CatalogService()


class TestCatalogService:
    """Tests for reading and creating products."""

    def test_list_skips_inactive_products(self, db, catalog, catalog_service):
        db.get(Product, catalog["product_b"]).is_active = False
        db.commit()

        products = catalog_service.list_products(db)

        assert [product.id for product in products] == [catalog["product_a"]]

    def test_get_inactive_product_not_found(self, db, catalog, catalog_service):
        db.get(Product, catalog["product_a"]).is_active = False
        db.commit()

        with pytest.raises(NotFoundError):
            catalog_service.get_product(db, catalog["product_a"])

    def test_create_product_in_minor_units(self, db, catalog_service):
        product = catalog_service.create_product(db, {
            "name": "Gift Box",
            "base_price": Decimal("499.99"),
            "variants": [
                {"sku": "GB-1", "type": "Gift", "size": "Large", "fragrance": "Mixed",
                 "price_adjustment": Decimal("0.01"), "stock": 7},
            ],
        })

        assert product.base_price_minor == 49999
        assert product.variants[0].price_adjustment_minor == 1
        assert product.variants[0].version == 0

        data = product_to_dict(product)
        assert data["variants"][0]["price"] == Decimal("500.00")
        assert data["total_stock"] == 7

    def test_duplicate_skus_in_request(self, db, catalog_service):
        variant = {"sku": "DUP", "type": "T", "size": "S", "fragrance": "F"}

        with pytest.raises(ValidationError):
            catalog_service.create_product(db, {"name": "X", "base_price": 1, "variants": [variant, variant]})
