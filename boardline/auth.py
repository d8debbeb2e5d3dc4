from fastapi import Header, HTTPException

from .utils import is_valid_id


def get_current_user(authorization: str = Header(...)) -> str:
    """Resolve the acting user from the bearer token.

    Credential issuance lives outside this service; the token handed to us is
    already the authenticated user id and is trusted as such.
    """
    prefix = "Bearer "
    if not authorization.startswith(prefix):
        raise HTTPException(status_code=401, detail="invalid_token")
    user_id = authorization[len(prefix) :].strip()
    if not is_valid_id(user_id):
        raise HTTPException(status_code=401, detail="invalid_token")
    return user_id
