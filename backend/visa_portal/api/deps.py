from typing import List, Tuple
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
import jwt

from visa_portal.core.security import TokenPayloadError, decode_access_token, identity_from_payload, roles_from_payload
from visa_portal.realtime.dispatcher import EventDispatcher
from visa_portal.realtime.hub import RealtimeHub

# Tokens are issued by the primary auth service; this URL is only advertised in the OpenAPI docs
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

def get_current_identity(token: str = Depends(oauth2_scheme)) -> Tuple[str, List[str]]:
    """Return (user_id, roles) from the bearer token.

    Uses the same decoding as the realtime socket so both accept the same tokens.
    """
    try:
        payload = decode_access_token(token)
        return identity_from_payload(payload), roles_from_payload(payload)
    except (jwt.PyJWTError, TokenPayloadError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

def require_roles(*allowed: str):
    def checker(identity: Tuple[str, List[str]] = Depends(get_current_identity)) -> Tuple[str, List[str]]:
        _user_id, roles = identity
        if not any(r in roles for r in allowed):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return identity
    return checker

def get_realtime(request: Request) -> RealtimeHub:
    return request.app.state.realtime

def get_dispatcher(hub: RealtimeHub = Depends(get_realtime)) -> EventDispatcher:
    return hub.dispatcher
