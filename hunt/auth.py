import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from .config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY

# Moderators and other users carry "access" tokens, hunt participants "participant" tokens
ACCESS_TOKEN = "access"
PARTICIPANT_TOKEN = "participant"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def create_token(subject: Any, token_type: str = ACCESS_TOKEN, expires_delta: Optional[timedelta] = None) -> str:
    """Signed bearer token whose subject is a user id or a participant id."""
    lifetime = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(subject),
        "type": token_type,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str = Depends(oauth2_scheme)) -> Dict[str, Any]:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )


def _subject(claims: Dict[str, Any], token_type: str) -> str:
    if claims.get("type") != token_type:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type"
        )
    return str(claims.get("sub"))


def get_current_user_id(claims: Dict[str, Any] = Depends(decode_token)) -> int:
    subject = _subject(claims, ACCESS_TOKEN)
    try:
        return int(subject)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid user ID"
        )


def get_current_participant_id(claims: Dict[str, Any] = Depends(decode_token)) -> uuid.UUID:
    subject = _subject(claims, PARTICIPANT_TOKEN)
    try:
        return uuid.UUID(subject)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid participant ID"
        )
