from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from gems_api.api.deps import get_current_admin
from gems_api.schemas import AdminRead, Token
from gems_api.services import auth as auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=Token)
async def login_admin(form_data: OAuth2PasswordRequestForm = Depends()) -> Token:
    try:
        username = auth_service.authenticate_admin(form_data.username, form_data.password)
    except auth_service.AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        ) from exc

    return Token(access_token=auth_service.create_token_for_admin(username))


@router.get("/me", response_model=AdminRead)
async def get_me(admin: AdminRead = Depends(get_current_admin)) -> AdminRead:
    return admin
