from fastapi import APIRouter, Depends, HTTPException
from datetime import datetime
import logging

from farfield.models.user import PublicProfile, User, UserRegister, Wallet
from farfield.db.session import get_db
from farfield.core.responses import success_response
from farfield.services.auth import AuthenticatedUser, get_current_account, get_current_user

logger = logging.getLogger(__name__)
router = APIRouter()

@router.post("/users/register")
async def register_user(
    user_data: UserRegister,
    identity: AuthenticatedUser = Depends(get_current_user),
    db=Depends(get_db),
):
    """Create the marketplace account for a Privy identity, or refresh its Farcaster profile"""
    existing = await db.users.find_one({"privy_id": identity.privy_id})

    # A Farcaster account can only be linked to one Privy identity
    fid_owner = await db.users.find_one({"farcaster_fid": user_data.farcaster_fid})
    if fid_owner and fid_owner["privy_id"] != identity.privy_id:
        raise HTTPException(status_code=409, detail="Farcaster account already registered")

    if existing:
        await db.users.update_one(
            {"privy_id": identity.privy_id},
            {"$set": {
                "farcaster_fid": user_data.farcaster_fid,
                "farcaster": user_data.farcaster.model_dump(),
                "updated_at": datetime.utcnow()
            }}
        )
        user = User(**await db.users.find_one({"privy_id": identity.privy_id}))
        if user_data.wallet:
            user = await _add_wallet(db, user, user_data.wallet)
        return success_response(PublicProfile.from_user(user), "User updated successfully")

    user = User(
        privy_id=identity.privy_id,
        farcaster_fid=user_data.farcaster_fid,
        farcaster=user_data.farcaster,
        wallets=[user_data.wallet] if user_data.wallet else [],
    )
    await db.users.insert_one(user.model_dump())
    logger.info(f"Registered user fid {user.farcaster_fid} ({user.username})")
    return success_response(PublicProfile.from_user(user), "User registered successfully", status_code=201)

@router.get("/users/me")
async def get_me(current_user: User = Depends(get_current_account)):
    return success_response(PublicProfile.from_user(current_user))

async def _add_wallet(db, user: User, wallet: Wallet) -> User:
    known = {w.address.lower() for w in user.wallets}
    if wallet.address.lower() in known:
        return user
    await db.users.update_one(
        {"id": user.id},
        {
            "$push": {"wallets": wallet.model_dump()},
            "$set": {"updated_at": datetime.utcnow()},
        }
    )
    return User(**await db.users.find_one({"id": user.id}))

@router.post("/users/me/wallet")
async def add_wallet(
    wallet: Wallet,
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
):
    """Link a wallet to the current user; the first linked wallet receives seller payouts"""
    user = await _add_wallet(db, current_user, wallet)
    return success_response(PublicProfile.from_user(user), "Wallet synced successfully")

@router.get("/users/fid/{fid}")
async def get_user_by_fid(fid: int, db=Depends(get_db)):
    user = await db.users.find_one({"farcaster_fid": fid})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return success_response(PublicProfile.from_user(User(**user)))
