import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import models, schemas

# --- JWT / security settings ---
SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-vehicle-rental-key")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "10080"))

# --- Password hashing ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a bcrypt hash.

    Parameters
    ----------
    plain_password : str
        Raw password provided by the user.
    hashed_password : str
        Previously stored bcrypt hash.

    Returns
    -------
    bool
        True if the password matches, False otherwise.
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def authenticate_user(db: Session, email: str, password: str) -> Optional[models.User]:
    """
    Authenticate a user given email and password.

    Returns
    -------
    Optional[User]
        The authenticated user if credentials are valid, otherwise None.
    """
    user = db.query(models.User).filter(models.User.email == email.lower()).first()
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT access token.

    Parameters
    ----------
    data : dict
        Claims to embed in the token ('sub', 'role', 'user_id').
    expires_delta : Optional[timedelta]
        Optional custom expiration interval.

    Returns
    -------
    str
        Encoded JWT string.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> schemas.TokenData:
    """
    Decode a JWT bearer token into the caller's identity.

    The token is expected in the Authorization header as a Bearer token
    and must carry 'user_id' and 'role' claims.

    Parameters
    ----------
    credentials : Optional[HTTPAuthorizationCredentials]
        Authorization header parsed by FastAPI's HTTPBearer.

    Returns
    -------
    TokenData
        The authenticated user id and role.

    Raises
    ------
    HTTPException
        401 if the token is missing, invalid, expired, or carries an
        unknown role.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("user_id")
        role = payload.get("role")
        if user_id is None or role is None:
            raise credentials_exception
        return schemas.TokenData(user_id=user_id, role=models.UserRole(role))
    except (JWTError, ValueError):
        raise credentials_exception


def require_roles(*allowed_roles: models.UserRole) -> Callable:
    """
    Build a dependency that enforces a set of allowed roles.

    Parameters
    ----------
    allowed_roles : UserRole
        One or more roles that are permitted to access a route.

    Returns
    -------
    Callable
        A FastAPI dependency that returns the caller's identity and raises
        HTTP 403 if the role is not allowed.
    """

    async def dependency(
        identity: schemas.TokenData = Depends(get_current_identity),
    ) -> schemas.TokenData:
        if identity.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden: You do not have access to this resource",
            )
        return identity

    return dependency
