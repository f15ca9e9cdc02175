"""
Minimal product record backing the default catalog client.

The catalog itself (CRUD, images, categories) lives outside this service; the
sync engine only reads the fields below and writes status/quantity.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, text, TIMESTAMP

from crosslister.database import Base, json_type
from crosslister.core.enums import ProductStatus


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    created_at = Column(TIMESTAMP(timezone=False), server_default=text("CURRENT_TIMESTAMP"), nullable=False)
    updated_at = Column(
        TIMESTAMP(timezone=False),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False
    )

    sku = Column(String, unique=True)
    upc = Column(String)
    title = Column(String, nullable=False)
    description = Column(String)
    brand = Column(String)
    model = Column(String)
    category = Column(String)
    condition = Column(String, default="good")
    price = Column(Float, nullable=False, default=0.0)
    quantity = Column(Integer, nullable=False, default=1)
    images = Column(json_type(), default=list)
    status = Column(String, default=ProductStatus.DRAFT.value, index=True)

    def __repr__(self):
        return f"<Product(id={self.id}, sku='{self.sku}', status='{self.status}', quantity={self.quantity})>"
