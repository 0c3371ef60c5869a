from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
)


Base = declarative_base()

PENDING = "PENDING"
PROCESSING = "PROCESSING"
SUCCESS = "SUCCESS"
FAILED = "FAILED"

PAYMENT_STATUSES = (PENDING, SUCCESS, FAILED)
FULFILLMENT_STATUSES = (PENDING, PROCESSING, SUCCESS, FAILED)
TERMINAL_FULFILLMENT = (SUCCESS, FAILED)


# ----------------------------
# ORM models
# ----------------------------
class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True, autoincrement=True)
    brand = Column(String, nullable=False, unique=True)
    category = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    is_popular = Column(Boolean, nullable=False, default=False)
    image_url = Column(String, nullable=True)


class Order(Base):
    __tablename__ = "orders"
    # GASS-<epoch ms>
    trx_id = Column(String, primary_key=True)
    # buyer-facing reference, e.g. the game account id
    product_id = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    # denomination display name
    product = Column(String, nullable=False)
    sku = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)  # selling price, IDR
    payment = Column(String, nullable=False, default="Midtrans")

    # PENDING | SUCCESS | FAILED
    payment_status = Column(String, nullable=False, default=PENDING)
    # PENDING | PROCESSING | SUCCESS | FAILED
    fulfillment_status = Column(String, nullable=False, default=PENDING)

    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=True)
