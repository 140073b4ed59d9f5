from sqlalchemy.orm import Session

from settlement_hub.config import Role
from settlement_hub.errors import Conflict, Forbidden, NotFound, ValidationFailed
from settlement_hub.logging_config import get_logger
from settlement_hub.models import models

logger = get_logger(__name__)


def _role_value(role: Role | str) -> str:
    try:
        return Role(role).value
    except ValueError as exc:
        raise ValidationFailed(f"unknown role {role!r}") from exc


class RoleGuard:
    """Additive role grants: a user may hold any subset of admin, moderator and user."""

    def has_role(self, db: Session, user_id: str | None, role: Role | str) -> bool:
        if not user_id:
            return False
        return (
            db.query(models.UserRole.id)
            .filter(models.UserRole.user_id == user_id)
            .filter(models.UserRole.role == _role_value(role))
            .first()
            is not None
        )

    def require_role(self, db: Session, user_id: str | None, role: Role | str) -> None:
        if not self.has_role(db, user_id, role):
            logger.warning("Denied user_id=%s missing role=%s", user_id, _role_value(role))
            raise Forbidden(f"{_role_value(role)} role required")

    def require_self_or_role(self, db: Session, user_id: str | None, account_id: str, role: Role | str = Role.ADMIN) -> None:
        if user_id and user_id == account_id:
            return
        self.require_role(db, user_id, role)

    def list_roles(self, db: Session, user_id: str | None = None) -> list[models.UserRole]:
        query = db.query(models.UserRole)
        if user_id:
            query = query.filter(models.UserRole.user_id == user_id)
        return query.order_by(models.UserRole.user_id, models.UserRole.role).all()

    def grant_role(self, db: Session, actor_id: str, user_id: str, role: Role | str) -> models.UserRole:
        self.require_role(db, actor_id, Role.ADMIN)
        value = _role_value(role)
        if self.has_role(db, user_id, value):
            raise Conflict("user already has this role")
        grant = models.UserRole(user_id=user_id, role=value, granted_by=actor_id)
        db.add(grant)
        db.flush()
        logger.info("Granted role=%s user_id=%s granted_by=%s", value, user_id, actor_id)
        return grant

    def revoke_role(self, db: Session, actor_id: str, user_id: str, role: Role | str) -> None:
        self.require_role(db, actor_id, Role.ADMIN)
        value = _role_value(role)
        deleted = (
            db.query(models.UserRole)
            .filter(models.UserRole.user_id == user_id)
            .filter(models.UserRole.role == value)
            .delete(synchronize_session=False)
        )
        if not deleted:
            raise NotFound("role grant not found")
        logger.info("Revoked role=%s user_id=%s revoked_by=%s", value, user_id, actor_id)

    def bootstrap_admins(self, db: Session, user_ids: list[str]) -> int:
        """Grant admin to configured operators that do not hold it yet."""
        granted = 0
        for user_id in user_ids:
            if not self.has_role(db, user_id, Role.ADMIN):
                db.add(models.UserRole(user_id=user_id, role=Role.ADMIN.value))
                granted += 1
        if granted:
            db.flush()
            logger.info("Bootstrapped %s admin grant(s)", granted)
        return granted
