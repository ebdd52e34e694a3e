import warnings

# ── Fix passlib + bcrypt >= 4.0 incompatibility ───────────────────────────────
# bcrypt 4.x removed __about__, which passlib reads while loading its backend
import bcrypt as _bcrypt
if not hasattr(_bcrypt, '__about__'):
    import types as _types
    _about = _types.ModuleType('bcrypt.__about__')
    _about.__version__ = getattr(_bcrypt, '__version__', '4.0.0')
    _bcrypt.__about__ = _about

warnings.filterwarnings("ignore", ".*error reading bcrypt version.*")

from passlib.context import CryptContext

from config import UserConfig

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Verify plain password against bcrypt hash. A malformed hash never matches."""
    try:
        return pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


def find_user(users: list[UserConfig], username: str, password: str) -> str | None:
    """
    Return the lower-cased name of the configured user matching both
    username (case-insensitive) and password, or None.
    """
    wanted = username.lower()
    for user in users:
        if user.username.lower() == wanted and verify_password(password, user.password_hash):
            return wanted
    return None
