from pydantic import BaseModel, Field
from typing import List, Optional
import uuid
from datetime import datetime

from farfield.models.base import ApiModel
from farfield.models.purchase import WALLET_ADDRESS_PATTERN

class FarcasterProfile(ApiModel):
    username: str
    display_name: str
    owner_address: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    pfp: Optional[str] = None

class Wallet(ApiModel):
    address: str = Field(..., pattern=WALLET_ADDRESS_PATTERN)
    chain_type: str = "ethereum"
    wallet_client_type: str = "privy"
    connector_type: str = "embedded"

class User(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    privy_id: str
    farcaster_fid: int
    farcaster: FarcasterProfile
    wallets: List[Wallet] = []  # wallets[0] receives seller payouts
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def username(self) -> str:
        return self.farcaster.username

    def payout_wallet(self) -> Optional[str]:
        return self.wallets[0].address if self.wallets else None

# Registration / profile models
class UserRegister(ApiModel):
    farcaster_fid: int = Field(..., gt=0)
    farcaster: FarcasterProfile
    wallet: Optional[Wallet] = None

class PublicProfile(ApiModel):
    id: str
    farcaster_fid: int
    username: str
    display_name: str
    bio: Optional[str] = None
    pfp: Optional[str] = None
    wallets: List[Wallet] = []
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "PublicProfile":
        return cls(
            id=user.id,
            farcaster_fid=user.farcaster_fid,
            username=user.farcaster.username,
            display_name=user.farcaster.display_name,
            bio=user.farcaster.bio,
            pfp=user.farcaster.pfp,
            wallets=user.wallets,
            created_at=user.created_at,
        )
