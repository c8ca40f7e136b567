import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from bakeledger.services.identity import Identity
from bakeledger.services.workspace import Workspace
from bakeledger.util.security import decode_token

auth_scheme = HTTPBearer(auto_error=False)

def current_identity(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> Identity | None:
    # no token: local-only scope
    if not creds:
        return None
    try:
        return decode_token(creds.credentials)
    except (jwt.InvalidTokenError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

async def get_workspace(request: Request, user: Identity | None = Depends(current_identity)) -> Workspace:
    return await request.app.state.registry.get(user)

def rejected(ws: Workspace) -> HTTPException:
    """HTTP error for an operation that returned its failure sentinel."""
    code = ws.last_error.status_code if ws.last_error is not None else 400
    return HTTPException(status_code=code, detail=ws.error or "Request rejected")
