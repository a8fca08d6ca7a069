"""Database connection and session management."""
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session
from typing import Any, Dict, Generator
import logging

from config import DATABASE_URL
from models import Base, Product, Variant

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    """Connection pool settings for the configured database."""
    if make_url(url).get_backend_name() == "sqlite":
        # Local runs and tests; writers wait on the database lock instead of failing
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": 3600,  # Recycle connections after 1 hour
        "pool_timeout": 30,  # Wait max 30 seconds for a connection
        "echo_pool": False,
    }


# Create engine with connection pool settings
engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Initialize database tables and seed data."""
    Base.metadata.create_all(bind=engine)

    # Seed data if empty
    db = SessionLocal()
    try:
        if db.query(Product).count() == 0:
            product = Product(
                name="Eco Shoe Deodoriser",
                description="Reusable shoe deodoriser made from bamboo charcoal, cedar and lavender.",
                category="Eco-Friendly Home Care",
                base_price_minor=29900,
                variants=[
                    Variant(sku="ESD-STD-S-LAV", type="Standard", size="Small",
                            fragrance="Lavender", price_adjustment_minor=0, stock=100),
                    Variant(sku="ESD-STD-M-CED", type="Standard", size="Medium",
                            fragrance="Cedar", price_adjustment_minor=5000, stock=80),
                    Variant(sku="ESD-PRM-M-MIX", type="Premium", size="Medium",
                            fragrance="Mixed", price_adjustment_minor=10000, stock=50),
                    Variant(sku="ESD-DLX-L-UNS", type="Deluxe", size="Large",
                            fragrance="Unscented", price_adjustment_minor=20000, stock=25),
                ],
            )
            db.add(product)
            db.commit()
            logger.info("Seeded database with sample products")
    finally:
        db.close()
