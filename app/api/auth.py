from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.services import auth_service

router = APIRouter(prefix="/auth", tags=["Auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    id: str
    company_id: str | None = None
    username: str
    display_name: str
    role: str
    active: bool = True

    model_config = {"from_attributes": True}


def get_current_user(
    token: str | None = Cookie(default=None, alias="token"),
    db: Session = Depends(get_db),
) -> User:
    """Dependency: extract user from JWT cookie."""
    if not token:
        raise HTTPException(401, "Not authenticated")
    payload = auth_service.decode_token(token)
    if not payload:
        raise HTTPException(401, "Invalid or expired token")
    user = auth_service.get_user_by_id(db, payload["sub"])
    if not user or not user.active:
        raise HTTPException(401, "User not found or disabled")
    return user


@router.post("/login")
def login(data: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    user = auth_service.authenticate(db, data.username, data.password)
    if not user:
        raise HTTPException(401, "Invalid username or password")
    token = auth_service.create_access_token(user.id, user.username)
    response.set_cookie("token", token, httponly=True, samesite="lax", max_age=3600 * 72)
    auth_service.log_activity(db, user.id, user.username, "login", ip=request.client.host if request.client else "")
    return {"token": token, "user": UserOut.model_validate(user)}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("token")
    return {"ok": True}


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user
