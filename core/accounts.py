import logging

from sqlalchemy.orm import Session

from core.config import ADMIN_ROLE, DEFAULT_ROLE
from core.models import Profile, UserRole, BrokerSettings

logger = logging.getLogger(__name__)

ROLES = (ADMIN_ROLE, DEFAULT_ROLE)
ACTIONS = ("delete_user", "add_role", "remove_role")


class Unauthorized(Exception):
    def __init__(self, message="Unauthorized"):
        super().__init__(message)


class Forbidden(Exception):
    def __init__(self, message="Forbidden: Admin access required"):
        super().__init__(message)


class AdminActionError(Exception):
    pass


# ===============================
# PROFILES
# ===============================

def ensure_profile(db: Session, user: dict) -> Profile:

    '''
        Return the local profile of an identity-service user, creating it with the
        default role on first sight.
    '''

    profile = db.get(Profile, user["id"])
    if profile is not None:
        return profile

    email = user.get("email") or ""
    metadata = user.get("user_metadata") or {}
    username = metadata.get("username") or email.split("@")[0] or user["id"]

    profile = Profile(id=user["id"], username=username, email=email)
    db.add(profile)
    db.add(UserRole(user_id=user["id"], role=DEFAULT_ROLE))
    db.commit()
    db.refresh(profile)
    logger.info("Created profile %s (%s)", profile.id, username)
    return profile


def has_role(db: Session, user_id: str, role: str) -> bool:
    return db.query(UserRole.id).filter(UserRole.user_id == user_id, UserRole.role == role).first() is not None


def user_roles(db: Session, user_id: str):
    return [r.role for r in db.query(UserRole).filter(UserRole.user_id == user_id).order_by(UserRole.id)]


def list_users(db: Session):
    profiles = db.query(Profile).order_by(Profile.created_at.desc()).all()
    return [
        {
            "id": p.id,
            "username": p.username,
            "email": p.email,
            "created_at": p.created_at.isoformat() if p.created_at else None,
            "roles": sorted({r.role for r in p.roles}),
        }
        for p in profiles
    ]


def require_admin(db: Session, caller_id: str):
    # Point lookup on every call, no caching
    if not has_role(db, caller_id, ADMIN_ROLE):
        raise Forbidden()


# ===============================
# ADMIN ACTIONS
# ===============================

def manage_user(db: Session, backend, caller_id: str, action: str, user_id: str, role: str = None) -> str:

    '''
        Run one admin action for caller_id and return the success message.
        The admin check and the mutation share one transaction; it is rolled back if anything fails.
    '''

    try:
        require_admin(db, caller_id)

        if action not in ACTIONS:
            raise AdminActionError("Invalid action")
        if not user_id:
            raise AdminActionError("userId is required")

        if action == "delete_user":
            db.query(UserRole).filter(UserRole.user_id == user_id).delete(synchronize_session=False)
            db.query(BrokerSettings).filter(BrokerSettings.user_id == user_id).delete(synchronize_session=False)
            db.query(Profile).filter(Profile.id == user_id).delete(synchronize_session=False)
            backend.delete_user(user_id)
            db.commit()
            logger.info("User %s deleted by %s", user_id, caller_id)
            return "User deleted successfully"

        if role not in ROLES:
            raise AdminActionError(f"Invalid role: {role!r}")

        if action == "add_role":
            if db.get(Profile, user_id) is None:
                raise AdminActionError(f"User not found: {user_id}")
            if not has_role(db, user_id, role):
                db.add(UserRole(user_id=user_id, role=role))
            db.commit()
            logger.info("Role %s added to user %s by %s", role, user_id, caller_id)
            return "Role added successfully"

        deleted = (
            db.query(UserRole)
            .filter(UserRole.user_id == user_id, UserRole.role == role)
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info("Role %s removed from user %s by %s (%d rows)", role, user_id, caller_id, deleted)
        return "Role removed successfully"

    except Exception:
        db.rollback()
        raise
