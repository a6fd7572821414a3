from enum import Enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func
from app.db.base import Base


class UserRole(str, Enum):
    ADMIN = "admin"
    RESELLER = "reseller"
    RESTAURANT_OWNER = "restaurant_owner"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    supabase_id = Column(String, unique=True, index=True, nullable=True)  # Supabase auth user ID (JWT "sub")
    full_name = Column(String, nullable=True)
    role = Column(
        SQLEnum(UserRole, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.RESTAURANT_OWNER,
    )
    # Set once, when the owner first checks out with a reseller's promo code
    reseller_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    promo_code_id = Column(
        Integer,
        ForeignKey("reseller_promo_codes.id", ondelete="SET NULL", use_alter=True, name="fk_users_promo_code_id"),
        nullable=True,
    )
    source = Column(String, nullable=True)  # "reseller" when acquired through a promo code
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
