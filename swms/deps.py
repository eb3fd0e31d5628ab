from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from swms.config import settings
from swms.logging_config import LogContext

auth_scheme = HTTPBearer(auto_error=False)

# Tokens are issued by the external auth service; the ledger only verifies them.
# async: the actor must land on LogContext in the request task, not a worker thread.

async def require_auth(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> str:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        data = jwt.decode(creds.credentials, settings.APP_SECRET, algorithms=["HS256"], options={"verify_aud": False})
        sub = data["sub"]
    except (jwt.PyJWTError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    LogContext.set(actor_id=sub)
    return sub
