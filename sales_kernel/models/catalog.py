"""
Module: sales_kernel.models.catalog
Responsibility: ORM persistence for the lookup tables a sale refers to:
    customers, service types, service providers, payment methods and
    operational cost types.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Names are unique per table.
    - ``ServiceTypeModel.requires_service_provider`` drives the provider
      guard of the operational ``in_progress`` transition.

Failure modes:
    - IntegrityError on duplicate name.

Audit relevance:
    Read by key only.  The kernel exposes no mutation surface for these
    tables; they are maintained by the surrounding application.
"""

from __future__ import annotations

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sales_kernel.db.base import Base


class CustomerModel(Base):
    __tablename__ = "customers"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    document: Mapped[str | None] = mapped_column(String(40), nullable=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Customer {self.name}>"


class ServiceTypeModel(Base):
    __tablename__ = "service_types"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # When True, a sale of this type cannot start execution without a
    # service provider.
    requires_service_provider: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<ServiceType {self.name} provider_required={self.requires_service_provider}>"


class ServiceProviderModel(Base):
    __tablename__ = "service_providers"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    document: Mapped[str | None] = mapped_column(String(40), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<ServiceProvider {self.name}>"


class PaymentMethodModel(Base):
    __tablename__ = "payment_methods"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<PaymentMethod {self.name}>"


class CostTypeModel(Base):
    __tablename__ = "cost_types"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<CostType {self.name}>"
