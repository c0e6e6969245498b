"""
Row-store schema.

Only the columns the engine reads are mapped; the tables themselves are
owned and migrated elsewhere. ``create_all`` exists for tests and local
fixtures.
"""
from sqlalchemy import Column, DateTime, Float, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class SalesFact(Base):
    """
    One pre-aggregated sales/availability row per day, SKU and location.

    ``comp_flag`` is 0 for own brands and 1 for competitor brands.
    """
    __tablename__ = "rb_pdp_olap"

    id = Column(Integer, primary_key=True, autoincrement=True)

    sales_date = Column(DateTime, index=True, nullable=False)

    # Dimensions
    platform = Column(String, index=True, nullable=True)
    brand = Column(String, index=True, nullable=True)
    location = Column(String, index=True, nullable=True)
    category = Column(String, nullable=True)
    sku_name = Column(String, nullable=True)
    comp_flag = Column(Integer, default=0)

    # Measures
    sales = Column(Float, default=0.0)
    neno_osa = Column(Float, default=0.0)
    deno_osa = Column(Float, default=0.0)


class LocationRegion(Base):
    """Location to region lookup, read-only for the engine."""
    __tablename__ = "location_regions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    location = Column(String, index=True, nullable=False)
    region = Column(String, nullable=False)


def create_all(engine) -> None:
    Base.metadata.create_all(bind=engine)
