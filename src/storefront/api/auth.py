# registration and login
from fastapi import APIRouter

from storefront.api import serializers
from storefront.api.schemas import LoginRequest, RegisterRequest
from storefront.db import crud
from storefront.utils.security import create_access_token

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_for(user) -> str:
    return create_access_token(user.id, user.email, user.role)


@router.post("/register", status_code=201)
async def register(body: RegisterRequest):
    user = await crud.register_user(
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )
    return {
        "message": "User registered successfully",
        "user": serializers.user(user),
        "token": _token_for(user),
    }


@router.post("/login")
async def login(body: LoginRequest):
    user = await crud.authenticate(body.email, body.password)
    return {"message": "Login successful", "user": serializers.user(user), "token": _token_for(user)}
