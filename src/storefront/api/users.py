# profile and saved addresses of the signed-in user
from fastapi import APIRouter, Depends

from storefront.api import serializers
from storefront.api.deps import require_user
from storefront.api.schemas import AddressRequest, AddressUpdateRequest, ProfileUpdateRequest
from storefront.db import crud
from storefront.utils.errors import NotFoundError
from storefront.utils.state import RequestIdentity

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/profile")
async def get_profile(identity: RequestIdentity = Depends(require_user)):
    user = await crud.get_user(identity.user_id)
    if user is None:
        raise NotFoundError("User not found")
    addresses = await crud.list_addresses(user.id)
    return {**serializers.user(user), "addresses": [serializers.address(a) for a in addresses]}


@router.put("/profile")
async def update_profile(
    body: ProfileUpdateRequest, identity: RequestIdentity = Depends(require_user)
):
    sent = body.model_fields_set
    changes = {
        field: getattr(body, field)
        for field in ("first_name", "last_name", "phone")
        if field in sent
    }
    user = await crud.update_profile(
        identity.user_id,
        changes,
        current_password=body.current_password,
        new_password=body.new_password,
    )
    return {"message": "Profile updated successfully", "user": serializers.user(user)}


@router.get("/addresses")
async def list_addresses(identity: RequestIdentity = Depends(require_user)):
    addresses = await crud.list_addresses(identity.user_id)
    return {"addresses": [serializers.address(a) for a in addresses], "total": len(addresses)}


@router.post("/addresses", status_code=201)
async def create_address(body: AddressRequest, identity: RequestIdentity = Depends(require_user)):
    fields = body.model_dump()
    fields["type"] = body.type.value
    address = await crud.create_address(identity.user_id, fields)
    return {"message": "Address created successfully", "address": serializers.address(address)}


@router.get("/addresses/{address_id}")
async def get_address(address_id: str, identity: RequestIdentity = Depends(require_user)):
    address = await crud.get_address(identity.user_id, address_id)
    return serializers.address(address)


@router.put("/addresses/{address_id}")
async def update_address(
    address_id: str,
    body: AddressUpdateRequest,
    identity: RequestIdentity = Depends(require_user),
):
    changes = body.model_dump(exclude_unset=True)
    if body.type is not None:
        changes["type"] = body.type.value
    address = await crud.update_address(identity.user_id, address_id, changes)
    return {"message": "Address updated successfully", "address": serializers.address(address)}


@router.delete("/addresses/{address_id}")
async def delete_address(address_id: str, identity: RequestIdentity = Depends(require_user)):
    await crud.delete_address(identity.user_id, address_id)
    return {"message": "Address deleted successfully"}
