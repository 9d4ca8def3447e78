import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import database
from errors import Unauthorized

# Auth settings
SECRET_KEY = os.getenv("SECRET_KEY", "secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 10))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/users/login", auto_error=False)


def verify_password(plain_password, hashed_password):
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def token_for(user: dict) -> str:
    return create_access_token({"sub": str(user["_id"]), "email": user["info_auth"]["email"]})


def authenticate(token: Optional[str]) -> dict:
    """Resolve a bearer token to the stored user document."""
    if not token:
        raise Unauthorized("You are not logged in. Please log in to continue.")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token. Please log in again.")

    user_id = database.to_object_id(payload.get("sub"))
    if user_id is None:
        raise Unauthorized("Invalid or expired token. Please log in again.")
    user = database.db["user"].find_one({"_id": user_id})
    if not user:
        raise Unauthorized("The user for this token no longer exists.")
    return user


def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> dict:
    return authenticate(token)
