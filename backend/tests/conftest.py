"""Pytest configuration and fixtures."""

import pytest
from decimal import Decimal
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stockcore.db.base import Base
# Import all models to ensure they're registered with Base.metadata
from stockcore.models import *
from stockcore.models.product import Product
from stockcore.models.recipe import Recipe, RecipeIngredient
from stockcore.models.restaurant import Restaurant
from stockcore.services.stock_deduction_service import StockDeductionService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def restaurant(db_session: Session) -> Restaurant:
    """Create a test restaurant."""
    restaurant = Restaurant(name="Test Bistro", timezone="America/Chicago")
    db_session.add(restaurant)
    db_session.commit()
    db_session.refresh(restaurant)
    return restaurant


@pytest.fixture
def make_product(db_session: Session, restaurant: Restaurant):
    """Factory for products belonging to the test restaurant."""

    def _make(
        name: str,
        purchase_unit: str,
        current_stock="0",
        cost_per_unit="0",
        size_value=None,
        size_unit=None,
    ) -> Product:
        product = Product(
            restaurant_id=restaurant.id,
            name=name,
            purchase_unit=purchase_unit,
            current_stock=Decimal(str(current_stock)),
            cost_per_unit=Decimal(str(cost_per_unit)),
            size_value=Decimal(str(size_value)) if size_value is not None else None,
            size_unit=size_unit,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture
def make_recipe(db_session: Session, restaurant: Restaurant):
    """Factory for recipes. Ingredients are (product, quantity, unit) tuples."""

    def _make(name: str, ingredients=(), pos_item_name=None, is_active=True) -> Recipe:
        recipe = Recipe(
            restaurant_id=restaurant.id,
            name=name,
            pos_item_name=pos_item_name if pos_item_name is not None else name,
            is_active=is_active,
        )
        for order, (product, quantity, unit) in enumerate(ingredients):
            recipe.ingredients.append(
                RecipeIngredient(
                    product_id=product.id,
                    quantity=Decimal(str(quantity)),
                    unit=unit,
                    sort_order=order,
                )
            )
        db_session.add(recipe)
        db_session.commit()
        db_session.refresh(recipe)
        return recipe

    return _make


@pytest.fixture
def service(db_session: Session) -> StockDeductionService:
    return StockDeductionService(db_session)
