from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from gems_api.core.security import ADMIN_ROLE, TokenError, decode_access_token
from gems_api.schemas import AdminRead
from gems_api.services.images import ImageService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_image_service(request: Request) -> ImageService:
    return request.app.state.image_service


async def get_current_admin(token: str = Depends(oauth2_scheme)) -> AdminRead:
    try:
        payload = decode_access_token(token)
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    username = payload.get("sub")
    if not username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    role = payload.get("role")
    if role != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return AdminRead(username=username, role=role)
