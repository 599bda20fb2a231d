# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
ORM Models — control-plane table definitions.

Tables:
  - clients: one row per tenant (the TenantRecord)
  - tenant_credentials: login role and password for each tenant database
  - users / stores / products: tenant-owned roots of the purge cascade
  - everything else: rows hanging off users, stores or products

Only keys, foreign keys and the columns the lifecycle service reads are
modelled; the business columns of these tables belong to the application.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Text, DateTime, ForeignKey, Index,
)

from tenancy.storage.database import Base

TENANT_STATUSES = ("active", "inactive", "suspended", "provisioning")


def _utcnow():
    return datetime.now(timezone.utc)


def _genuuid():
    return str(uuid.uuid4())


def _id():
    return Column(String(36), primary_key=True, default=_genuuid)


def _fk(target: str, nullable: bool = True, index: bool = True):
    return Column(String(36), ForeignKey(target), nullable=nullable, index=index)


# ── Tenants ─────────────────────────────────────────────────

class Client(Base):
    __tablename__ = "clients"

    id = _id()
    name = Column(String(256), nullable=False)
    email = Column(String(256), nullable=False, unique=True)
    contact_name = Column(String(256), nullable=True)
    phone = Column(String(64), nullable=True)
    address = Column(Text, nullable=True)
    tier = Column(String(32), nullable=False, default="basic")
    status = Column(String(32), nullable=False, default="provisioning")  # active/inactive/suspended/provisioning
    database_name = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Client {self.id} status={self.status}>"


class TenantCredential(Base):
    __tablename__ = "tenant_credentials"

    tenant_id = Column(String(36), primary_key=True)
    database_name = Column(String(128), nullable=False)
    username = Column(String(128), nullable=False)
    password = Column(Text, nullable=False)  # Fernet ciphertext unless encryption is off
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<TenantCredential {self.tenant_id} user={self.username}>"


# ── Tenant-owned roots ──────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id = _id()
    client_id = _fk("clients.id", nullable=False)
    first_name = Column(String(128), nullable=False)
    last_name = Column(String(128), nullable=True)
    email = Column(String(256), nullable=False, unique=True)
    password_hash = Column(Text, nullable=True)
    role = Column(String(32), nullable=False, default="employee")
    status = Column(String(32), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class Store(Base):
    __tablename__ = "stores"

    id = _id()
    client_id = _fk("clients.id", nullable=False)
    name = Column(String(256), nullable=False)


class Product(Base):
    __tablename__ = "products"

    id = _id()
    client_id = _fk("clients.id", nullable=False)
    name = Column(String(256), nullable=False)


class Business(Base):
    __tablename__ = "businesses"

    id = _id()
    client_id = _fk("clients.id", nullable=False)


# ── Rows hanging off users ──────────────────────────────────

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = _id()
    user_id = _fk("users.id")
    action = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id = _id()
    user_id = _fk("users.id")


class ApiToken(Base):
    __tablename__ = "api_tokens"

    id = _id()
    user_id = _fk("users.id")


class InviteLink(Base):
    __tablename__ = "invite_links"

    id = _id()
    user_id = _fk("users.id")


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"

    id = _id()
    user_id = _fk("users.id")


class Permission(Base):
    __tablename__ = "permissions"

    id = _id()
    granted_by = _fk("users.id")


class RoleTemplate(Base):
    __tablename__ = "role_templates"

    id = _id()
    created_by = _fk("users.id")


class UserRole(Base):
    __tablename__ = "user_roles"

    id = _id()
    user_id = _fk("users.id")
    assigned_by = _fk("users.id")


class UserStoreMap(Base):
    __tablename__ = "user_store_map"

    id = _id()
    user_id = _fk("users.id")
    store_id = _fk("stores.id")


# ── Rows hanging off stores ─────────────────────────────────

class StoreSetting(Base):
    __tablename__ = "store_settings"

    id = _id()
    store_id = _fk("stores.id")


class Supplier(Base):
    __tablename__ = "suppliers"

    id = _id()
    store_id = _fk("stores.id")


class Customer(Base):
    __tablename__ = "customers"

    id = _id()
    store_id = _fk("stores.id")
    client_id = _fk("clients.id")


class Sale(Base):
    __tablename__ = "sales"

    id = _id()
    user_id = _fk("users.id")
    store_id = _fk("stores.id")
    client_id = _fk("clients.id")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SaleReturn(Base):
    __tablename__ = "sale_returns"

    id = _id()
    sale_id = _fk("sales.id")
    processed_by = _fk("users.id")


class SaleAdjustment(Base):
    __tablename__ = "sale_adjustments"

    id = _id()
    user_id = _fk("users.id")
    store_id = _fk("stores.id")
    product_id = _fk("products.id")


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = _id()
    user_id = _fk("users.id")
    store_id = _fk("stores.id")
    product_id = _fk("products.id")


class Expense(Base):
    __tablename__ = "expenses"

    id = _id()
    user_id = _fk("users.id")
    store_id = _fk("stores.id")


class OrderProcessing(Base):
    __tablename__ = "order_processing"

    id = _id()
    driver_id = _fk("users.id")
    store_id = _fk("stores.id")


class Report(Base):
    __tablename__ = "reports"

    id = _id()
    store_id = _fk("stores.id")


class FileUploadInventory(Base):
    __tablename__ = "file_upload_inventory"

    id = _id()
    store_id = _fk("stores.id")


class ErrorLog(Base):
    __tablename__ = "error_logs"

    id = _id()
    file_upload_id = _fk("file_upload_inventory.id")


# ── Rows hanging off products ───────────────────────────────

class Pack(Base):
    __tablename__ = "packs"

    id = _id()
    product_id = _fk("products.id")


Index("idx_users_client_status", User.client_id, User.status)
