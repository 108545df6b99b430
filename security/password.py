from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def _truncate(password: str) -> str:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES].decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
    return _pwd_context.hash(_truncate(password))


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _pwd_context.verify(_truncate(password), password_hash)
    except ValueError:
        # Malformed or foreign hash
        return False
