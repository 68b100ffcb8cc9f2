"""
Session and account management.

Issues JWT session tokens for members, keeps the current identity and tells
subscribers whenever it changes (sign in, sign up, sign out).
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, DEFAULT_ROLE, ROLES, SECRET_KEY
from errors import AuthError, CapabilityError, ValidationError
from logging_config import get_logger
from schemas import SignupRequest

logger = get_logger("session")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
_email_adapter = TypeAdapter(EmailStr)

USERS = "users"
MIN_PASSWORD_LENGTH = 6
PROTECTED_PROFILE_FIELDS = {"password_hash", "role", "cart", "wishlist", "email"}


class Identity(BaseModel):
    uid: str
    email: str


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def validate_signup(request: SignupRequest) -> None:
    if not all([request.name, request.email, request.password, request.confirm_password, request.phone, request.role]):
        raise ValidationError("Please fill in all required fields")
    if len(request.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters", "auth/weak-password")
    if request.password != request.confirm_password:
        raise ValidationError("Passwords do not match")
    try:
        _email_adapter.validate_python(request.email)
    except PydanticValidationError:
        raise ValidationError("Please enter a valid email address", "auth/invalid-email")
    if request.role not in ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLES)}")


class SessionManager:
    """Current identity plus change notifications.

    One instance per device/client. HTTP requests don't share a current
    identity, they decode their own bearer token with identity_from_token.
    """

    def __init__(self, store, secret_key: str = SECRET_KEY, expire_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES):
        self.store = store
        self.secret_key = secret_key
        self.expire_minutes = expire_minutes
        self.token: Optional[str] = None
        self._identity: Optional[Identity] = None
        self._listeners: List[Callable[[Optional[Identity]], None]] = []

    def current_identity(self) -> Optional[Identity]:
        return self._identity

    def subscribe(self, on_change: Callable[[Optional[Identity]], None]) -> Callable[[], None]:
        self._listeners.append(on_change)

        def unsubscribe():
            if on_change in self._listeners:
                self._listeners.remove(on_change)

        return unsubscribe

    def _set_identity(self, identity: Optional[Identity], token: Optional[str] = None) -> None:
        self._identity = identity
        self.token = token
        for listener in list(self._listeners):
            listener(identity)

    # Tokens

    def create_access_token(self, identity: Identity, expires_delta: Optional[timedelta] = None) -> str:
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=self.expire_minutes))
        to_encode = {"sub": identity.uid, "email": identity.email, "exp": expire}
        return jwt.encode(to_encode, self.secret_key, algorithm=ALGORITHM)

    def identity_from_token(self, token: str) -> Identity:
        invalid = AuthError("Could not validate credentials", "auth/invalid-token")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
        except JWTError:
            raise invalid
        uid = payload.get("sub")
        if uid is None:
            raise invalid
        return Identity(uid=uid, email=payload.get("email", ""))

    # Accounts

    def sign_up(self, request: SignupRequest) -> str:
        """Create the account and its user document, then sign in."""
        validate_signup(request)
        email = request.email.strip().lower()
        if self.store.query(USERS, {"email": email}):
            raise AuthError("This email is already registered with MobileHub", "auth/email-already-in-use")
        now = datetime.now(timezone.utc)
        uid = self.store.add(USERS, {
            "name": request.name.strip(),
            "email": email,
            "phone": request.phone,
            "address": request.address or "",
            "role": request.role,
            "password_hash": get_password_hash(request.password),
            "created_at": now,
            "wishlist": [],
            "cart": [],
            "is_active": True,
            "member_since": now,
            "total_purchases": 0,
            "loyalty_points": 0,
        })
        logger.info("Created %s account %s", request.role, uid)
        identity = Identity(uid=uid, email=email)
        token = self.create_access_token(identity)
        self._set_identity(identity, token)
        return token

    def sign_in(self, email: str, password: str) -> str:
        if not email or not password:
            raise ValidationError("Please fill in all fields")
        email = email.strip().lower()
        matches = self.store.query(USERS, {"email": email})
        if not matches:
            raise AuthError("No account found with this email", "auth/user-not-found")
        user = matches[0]
        if not verify_password(password, user.get("password_hash", "")):
            raise AuthError("Incorrect password", "auth/wrong-password")
        identity = Identity(uid=user["id"], email=email)
        token = self.create_access_token(identity)
        self._set_identity(identity, token)
        return token

    def sign_out(self) -> None:
        self._set_identity(None)

    # Profile

    def load_profile(self, identity: Identity) -> dict:
        user = self.store.get(USERS, identity.uid)
        if user is None:
            raise AuthError("Account no longer exists", "auth/user-not-found")
        user.pop("password_hash", None)
        return user

    def update_profile(self, identity: Identity, changes: dict) -> dict:
        blocked = PROTECTED_PROFILE_FIELDS.intersection(changes)
        if blocked:
            raise ValidationError(f"Cannot edit {', '.join(sorted(blocked))} from the profile")
        if changes:
            self.store.update(USERS, identity.uid, changes)
        return self.load_profile(identity)

    def user_role(self, identity: Optional[Identity]) -> Optional[str]:
        """Stored role for a member, None for guests."""
        if identity is None:
            return None
        try:
            user = self.store.get(USERS, identity.uid)
        except CapabilityError as e:
            logger.error("Error loading user role: %s", e.message)
            return DEFAULT_ROLE
        return (user or {}).get("role") or DEFAULT_ROLE
