from __future__ import annotations

import hashlib
import logging
import os

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from msp.domain.models import (
    BootstrapAdminRequest,
    Permission,
    Role,
    RolePermission,
    Tenant,
    TenantCreate,
    User,
    UserCreate,
    UserRole,
)
from msp.domain.permissions import DEFAULT_PERMISSION_NAMES
from msp.infra.db import get_engine
from msp.services.errors import ConflictError, NotFoundError, ServiceError

logger = logging.getLogger(__name__)

PASSWORD_SALT = os.getenv("PASSWORD_SALT", "msp-dev-salt")


class AuthError(ServiceError):
    pass


class IdentityService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        return hashlib.sha256(f"{PASSWORD_SALT}:{raw_password}".encode()).hexdigest()

    def _ensure_default_permissions(self, session: Session) -> list[Permission]:
        existing = session.exec(select(Permission)).all()
        by_name = {item.name: item for item in existing}
        for name in DEFAULT_PERMISSION_NAMES:
            if name in by_name:
                continue
            session.add(Permission(name=name, description=f"default permission {name}"))
        session.flush()
        return list(session.exec(select(Permission)).all())

    def create_tenant(self, payload: TenantCreate) -> Tenant:
        with self._session() as session:
            tenant = Tenant(name=payload.name)
            session.add(tenant)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant name already exists") from exc
            session.refresh(tenant)
        logger.info("tenant %s created", tenant.id)
        return tenant

    def get_tenant(self, tenant_id: str) -> Tenant:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFoundError("tenant not found")
            return tenant

    def create_user(self, tenant_id: str, payload: UserCreate) -> User:
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            user = User(
                tenant_id=tenant_id,
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=payload.is_active,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists in tenant") from exc
            session.refresh(user)
            return user

    def list_users(self, tenant_id: str) -> list[User]:
        with self._session() as session:
            return list(session.exec(select(User).where(User.tenant_id == tenant_id)).all())

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        """Create the first user of a tenant, holding every permission."""
        with self._session() as session:
            if session.get(Tenant, payload.tenant_id) is None:
                raise NotFoundError("tenant not found")
            existing_user = session.exec(select(User.id).where(User.tenant_id == payload.tenant_id)).first()
            if existing_user is not None:
                raise ConflictError("tenant already initialized")

            all_permissions = self._ensure_default_permissions(session)
            admin_role = Role(tenant_id=payload.tenant_id, name="admin", description="bootstrap admin role")
            admin_user = User(
                tenant_id=payload.tenant_id,
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=True,
            )
            session.add(admin_role)
            session.add(admin_user)
            session.flush()
            for permission in all_permissions:
                session.add(RolePermission(role_id=admin_role.id, permission_id=permission.id))
            session.add(UserRole(tenant_id=payload.tenant_id, user_id=admin_user.id, role_id=admin_role.id))
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant already initialized") from exc
            session.refresh(admin_user)
        logger.info("bootstrapped admin %s for tenant %s", admin_user.id, payload.tenant_id)
        return admin_user

    def collect_user_permissions(self, session: Session, tenant_id: str, user_id: str) -> list[str]:
        role_ids = list(
            session.exec(
                select(UserRole.role_id).where(UserRole.tenant_id == tenant_id).where(UserRole.user_id == user_id)
            ).all()
        )
        if not role_ids:
            return []
        names = session.exec(
            select(Permission.name)
            .join(RolePermission, col(RolePermission.permission_id) == col(Permission.id))
            .join(Role, col(Role.id) == col(RolePermission.role_id))
            .where(Role.tenant_id == tenant_id)
            .where(col(Role.id).in_(role_ids))
        ).all()
        return sorted(set(names))

    def dev_login(self, tenant_id: str, username: str, password: str) -> tuple[User, list[str]]:
        with self._session() as session:
            statement = select(User).where(User.tenant_id == tenant_id).where(User.username == username)
            user = session.exec(statement).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if user.password_hash != self._hash_password(password):
                raise AuthError("invalid credentials")
            permissions = self.collect_user_permissions(session, tenant_id, user.id)
        return user, permissions
