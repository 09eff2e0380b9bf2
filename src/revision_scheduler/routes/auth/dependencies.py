"""
# Authentication Dependencies

The scheduler never manages credentials. Access tokens are issued by the
identity service; this module only verifies them and extracts:

- `sub`: the opaque user id that scopes every query
- the feed username claim (`USERNAME_CLAIM`, default `leetcode_username`), used
  for reconciliation and optional

**Usage:**
```python
@router.get("/summary")
async def get_summary(current_user: CurrentUser = Depends(get_current_user_dep)):
    ...
```

Attributes:
    oauth2_scheme (OAuth2PasswordBearer): FastAPI OAuth2 token extractor
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from revision_scheduler.config import settings
from revision_scheduler.managers.logging_manager import get_logger

logger = get_logger(prefix="[Security Dependencies]")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class CurrentUser(BaseModel):
    user_id: str
    username: Optional[str] = None


async def get_current_user_dep(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """
    Decode the bearer token into the caller's identity.

    Raises:
        HTTPException(401): If the token is invalid, expired or has no subject.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY.get_secret_value(), algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning("Rejected access token: %s", e)
        raise credentials_exception from e

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Rejected access token without subject")
        raise credentials_exception

    username = payload.get(settings.USERNAME_CLAIM)
    return CurrentUser(user_id=str(user_id), username=str(username) if username else None)
