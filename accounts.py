import logging
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import ADMIN_VERIFICATION_MIN_LENGTH, BCRYPT_ROUNDS, REVIEWER_USER_ID
from errors import BadRequest, Conflict, Forbidden, NotFound, Unauthorized
from models import AdminVerification, Notification, User, UserLogin, utcnow
from notifications import NotificationDispatcher
from schemas import LoginRequest, RegisterRequest, UserUpdate

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

USER_UPDATABLE_FIELDS = ("name", "email", "phone", "barangay", "avatar")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # unknown or malformed hash in the row
        return False


def user_to_dict(user: User):
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "avatar": user.avatar,
        "phone": user.phone,
        "barangay": user.barangay,
        "created_at": user.created_at,
    }


class AccountStore:
    """Registration, credential checks and the admin verification workflow."""

    def __init__(self, session: Session, dispatcher: NotificationDispatcher):
        self.session = session
        self.dispatcher = dispatcher

    # ---------- helpers ----------

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def _latest_verification(self, user_id: int, status: Optional[str] = None) -> Optional[AdminVerification]:
        query = self.session.query(AdminVerification).filter(AdminVerification.user_id == user_id)
        if status is not None:
            query = query.filter(AdminVerification.status == status)
        return query.order_by(AdminVerification.created_at.desc(), AdminVerification.id.desc()).first()

    def _check_verification_info(self, info: Optional[str]):
        if not info:
            raise BadRequest("Verification information is required for admin accounts")
        if len(info) < ADMIN_VERIFICATION_MIN_LENGTH:
            raise BadRequest(
                f"Verification information is too short (minimum {ADMIN_VERIFICATION_MIN_LENGTH} characters)"
            )

    def email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        query = self.session.query(User.id).filter(User.email == email)
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        return query.first() is not None

    def _open_verification(self, user: User, info: str):
        self.session.add(AdminVerification(
            user_id=user.id,
            verification_info=info,
            status="pending",
            created_at=utcnow(),
        ))
        self.session.flush()
        self.dispatcher.dispatch(
            self.session,
            title="New Admin Verification Request",
            message=(
                f"User {user.name} ({user.email}) has requested admin access. "
                "Please review their verification information."
            ),
            type="info",
            user_id=REVIEWER_USER_ID,
            sender_id=user.id,
        )

    # ---------- operations ----------

    def register(self, data: RegisterRequest):
        if data.role == "admin":
            self._check_verification_info(data.verificationInfo)
        if self.email_taken(data.email):
            raise Conflict("Email already in use")

        user = User(
            name=data.name,
            email=data.email,
            password=hash_password(data.password),
            role=data.role,
            avatar=data.avatar,
            phone=data.phone,
            barangay=data.barangay,
            created_at=utcnow(),
        )
        try:
            self.session.add(user)
            self.session.flush()
            if data.role == "admin":
                self._open_verification(user, data.verificationInfo)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise Conflict("Email already in use")
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info("User %s registered as %s", user.id, user.role)

        verified = data.role != "admin"
        return {
            "success": True,
            "message": "Registration successful." if verified
            else "Registration successful. Your account is pending verification.",
            "user": {**user_to_dict(user), "verified": verified},
        }

    def login(self, data: LoginRequest, ip_address: Optional[str] = None):
        user = self.session.query(User).filter(User.email == data.email).first()
        if user is None or not verify_password(data.password, user.password):
            raise Unauthorized("Invalid email or password")

        if user.role == "admin":
            latest = self._latest_verification(user.id)
            if latest is not None and latest.status == "rejected":
                raise Forbidden("Your admin account verification was rejected", extra={"status": "rejected"})
            if latest is None or latest.status != "approved":
                raise Forbidden("Your admin account is pending verification", extra={"status": "pending"})

        try:
            self.session.add(UserLogin(user_id=user.id, login_time=utcnow(), ip_address=ip_address))
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info("User %s logged in", user.id)
        return {**user_to_dict(user), "verified": True}

    def resolve_verification(self, user_id: int, status: str, notes: str):
        if status not in ("approved", "rejected"):
            raise BadRequest("Invalid status value")
        user = self.get_user(user_id)
        pending = self._latest_verification(user_id, status="pending")
        if pending is None:
            raise NotFound("No pending verification request found for this user")

        try:
            pending.status = status
            pending.admin_notes = notes
            pending.updated_at = utcnow()
            self.session.flush()
            if status == "approved":
                self.dispatcher.dispatch(
                    self.session,
                    title="Admin Access Approved",
                    message="Your request for admin access has been approved. You now have access to admin features.",
                    type="success",
                    user_id=user.id,
                )
            else:
                self.dispatcher.dispatch(
                    self.session,
                    title="Admin Access Rejected",
                    message=f"Your request for admin access has been rejected. Reason: {notes}",
                    type="error",
                    user_id=user.id,
                )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info("Admin verification for user %s %s", user_id, status)
        return {"success": True, "message": "Admin verification status updated successfully"}

    def verification_status(self, user_id: int):
        user = self.get_user(user_id)
        if user.role != "admin":
            return {"verified": True, "status": "not_applicable"}

        latest = self._latest_verification(user_id)
        if latest is None:
            return {"verified": False, "status": "no_request"}
        return {
            "verified": latest.status == "approved",
            "status": latest.status,
            "notes": latest.admin_notes,
            "requestDate": latest.created_at,
            "updatedDate": latest.updated_at,
        }

    def request_verification(self, user_id: int, info: str):
        """Open a new pending request for an admin with no request or a rejected one."""
        user = self.get_user(user_id)
        if user.role != "admin":
            raise BadRequest("Verification requests are only accepted for admin accounts")
        self._check_verification_info(info)

        latest = self._latest_verification(user_id)
        if latest is not None and latest.status == "pending":
            raise Conflict("A verification request is already pending")
        if latest is not None and latest.status == "approved":
            raise Conflict("Account is already verified")

        try:
            self._open_verification(user, info)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info("User %s submitted a new verification request", user_id)
        return {"success": True, "message": "Verification request submitted."}


class UserStore:
    """User CRUD behind /users. Creation goes through AccountStore.register."""

    def __init__(self, session: Session, accounts: AccountStore):
        self.session = session
        self.accounts = accounts

    def list(self):
        users = self.session.query(User).order_by(User.id.asc()).all()
        return [user_to_dict(u) for u in users]

    def get(self, user_id: int):
        return user_to_dict(self.accounts.get_user(user_id))

    def create(self, data: RegisterRequest):
        return self.accounts.register(data)

    def update(self, user_id: int, data: UserUpdate):
        user = self.accounts.get_user(user_id)

        changes = {name: getattr(data, name) for name in USER_UPDATABLE_FIELDS
                   if name in data.model_fields_set and getattr(data, name) is not None}
        password = data.password if data.password else None
        if not changes and password is None:
            raise BadRequest("No fields to update")
        if "email" in changes and self.accounts.email_taken(changes["email"], exclude_id=user_id):
            raise Conflict("Email already in use")

        try:
            for name, value in changes.items():
                setattr(user, name, value)
            if password is not None:
                user.password = hash_password(password)
            user.updated_at = utcnow()
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise Conflict("Email already in use")
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info("User %s updated", user_id)
        return user_to_dict(user)

    def delete(self, user_id: int):
        user = self.accounts.get_user(user_id)
        try:
            self.session.query(AdminVerification).filter(AdminVerification.user_id == user_id).delete(
                synchronize_session=False
            )
            self.session.query(UserLogin).filter(UserLogin.user_id == user_id).delete(synchronize_session=False)
            self.session.query(Notification).filter(Notification.user_id == user_id).delete(
                synchronize_session=False
            )
            removed = self.session.query(User).filter(User.id == user_id).delete(synchronize_session=False)
            if removed == 0:
                self.session.rollback()
                raise NotFound("User not found")
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.expunge(user)
        logger.info("User %s deleted", user_id)
