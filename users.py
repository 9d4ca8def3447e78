"""Customer accounts: registration, login and profile."""
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import auth
import database
from errors import AlreadyExists, InvalidRequest, NotFound, Unauthorized
from logconfig import get_logger
from schemas import PHONE_RE, LoginPayload, PasswordChange, ProfileUpdate, RegisterPayload

logger = get_logger(__name__)

COLLECTION = "user"
MIN_PASSWORD_LENGTH = 6


def public_view(user: dict, token: Optional[str] = None) -> dict:
    """The account as the API shows it; the password hash never leaves this module."""
    data = {
        "id": str(user["_id"]),
        "email": user["info_auth"]["email"],
        "info_user": user["info_user"],
    }
    if token is not None:
        data["token"] = token
    return data


def _find_by_email(email: str) -> Optional[dict]:
    return database.db[COLLECTION].find_one({"info_auth.email": email.strip().lower()})


def register(payload: RegisterPayload) -> dict:
    email = payload.info_auth.email.lower()
    if _find_by_email(email):
        raise AlreadyExists("Email is already in use.")

    doc = {
        "info_user": payload.info_user.model_dump(),
        "info_auth": {"email": email, "password": auth.get_password_hash(payload.info_auth.password)},
    }
    try:
        user_id = database.create_document(COLLECTION, doc)
    except DuplicateKeyError:
        raise AlreadyExists("Email is already in use.")

    user = database.db[COLLECTION].find_one({"_id": database.to_object_id(user_id)})
    logger.info("user registered", user_id=user_id)
    return public_view(user, auth.token_for(user))


def login(payload: LoginPayload) -> dict:
    # credentials may come flat or nested the way registration sends them
    creds = payload.info_auth or payload
    if not creds.email or not creds.password:
        raise InvalidRequest("Please provide an email and a password.")

    user = _find_by_email(creds.email)
    if user is None or not auth.verify_password(creds.password, user["info_auth"]["password"]):
        logger.info("login rejected", email=creds.email)
        raise Unauthorized("Incorrect email or password.")
    return public_view(user, auth.token_for(user))


def update_profile(user: dict, payload: ProfileUpdate) -> dict:
    """Apply a partial update to ``info_user``; only the fields sent are touched."""
    if payload.info_user is None:
        raise InvalidRequest("Please provide the information to update.")

    info = payload.info_user
    updates = {}
    if info.username is not None:
        if info.username.lastname:
            updates["info_user.username.lastname"] = info.username.lastname
        if info.username.firstname:
            updates["info_user.username.firstname"] = info.username.firstname
    if info.phone:
        if not PHONE_RE.fullmatch(info.phone):
            raise InvalidRequest("Phone number is invalid (must be 10 digits).")
        updates["info_user.phone"] = info.phone
    if info.address:
        updates["info_user.address"] = info.address
    if not updates:
        raise InvalidRequest("Nothing to update.")

    updates["updated_at"] = database.now()
    updated = database.db[COLLECTION].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("User not found.")
    return public_view(updated)


def change_password(user: dict, payload: PasswordChange) -> None:
    if not payload.current_password or not payload.new_password:
        raise InvalidRequest("Please provide the current and the new password.")
    if not auth.verify_password(payload.current_password, user["info_auth"]["password"]):
        raise InvalidRequest("Current password is incorrect.")
    if len(payload.new_password) < MIN_PASSWORD_LENGTH:
        raise InvalidRequest(f"New password must be at least {MIN_PASSWORD_LENGTH} characters.")

    database.db[COLLECTION].update_one(
        {"_id": user["_id"]},
        {"$set": {"info_auth.password": auth.get_password_hash(payload.new_password), "updated_at": database.now()}},
    )
    logger.info("password changed", user_id=str(user["_id"]))
