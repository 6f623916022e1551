from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from enum import Enum
import uuid
from datetime import datetime, timedelta

from farfield.models.base import ApiModel

WALLET_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
TRANSACTION_HASH_PATTERN = r"^0x[a-fA-F0-9]{64}$"

class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

def generate_purchase_id() -> str:
    return f"purchase_{uuid.uuid4().hex[:16]}"

class PurchaseItem(BaseModel):
    product_id: str
    price: int = Field(..., ge=0)  # USDC units (6 decimals)
    seller_fid: int
    seller_wallet: str

class Purchase(BaseModel):
    purchase_id: str = Field(default_factory=generate_purchase_id)
    buyer_fid: int
    buyer_wallet: str
    items: List[PurchaseItem]
    total_amount: float = Field(..., ge=0)  # dollars the buyer pays
    platform_fee: float = Field(..., ge=0)  # dollars
    status: PurchaseStatus = PurchaseStatus.PENDING
    transaction_hash: Optional[str] = None
    blockchain_verified: bool = False
    blockchain_timestamp: Optional[int] = None
    expires_at: Optional[datetime] = None  # removed once completed
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @classmethod
    def create_pending(cls, expiry_minutes: int, **fields) -> "Purchase":
        now = datetime.utcnow()
        return cls(
            status=PurchaseStatus.PENDING,
            expires_at=now + timedelta(minutes=expiry_minutes),
            created_at=now,
            updated_at=now,
            **fields,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.status == PurchaseStatus.COMPLETED or self.expires_at is None:
            return False
        return (now or datetime.utcnow()) > self.expires_at

    def product_ids(self) -> List[str]:
        return [item.product_id for item in self.items]

    def to_document(self) -> dict:
        document = self.model_dump(mode="python")
        document["status"] = self.status.value
        return document

# Request bodies

class PurchaseRequestItem(ApiModel):
    product_id: str = Field(..., min_length=1)

class InitiatePurchaseRequest(ApiModel):
    items: List[PurchaseRequestItem] = Field(..., min_length=1)
    buyer_wallet: str = Field(..., pattern=WALLET_ADDRESS_PATTERN)

class ConfirmPurchaseRequest(ApiModel):
    purchase_id: str = Field(..., min_length=1, max_length=100)
    transaction_hash: str = Field(..., pattern=TRANSACTION_HASH_PATTERN)

    @field_validator("purchase_id")
    @classmethod
    def strip_purchase_id(cls, value: str) -> str:
        return value.strip()

# Responses

class TransactionPayload(ApiModel):
    type: str
    description: str
    to: str
    data: str
    value: str = "0x0"
    gas: str

class SummaryItem(ApiModel):
    id: str
    name: str
    price: float
    seller: str

class PurchaseSummary(ApiModel):
    items: List[SummaryItem]
    total_amount: float
    platform_fee: float
    expires_at: datetime

class BlockchainTarget(ApiModel):
    network: str
    contract_address: str

class InitiatePurchaseResponse(ApiModel):
    purchase_id: str
    transactions: List[TransactionPayload]
    summary: PurchaseSummary
    blockchain: BlockchainTarget

class ConfirmedItem(ApiModel):
    product_id: str
    price: float  # dollars

class BlockchainProof(ApiModel):
    timestamp: Optional[int] = None
    verified: bool = True

class ConfirmPurchaseResponse(ApiModel):
    purchase_id: str
    status: PurchaseStatus
    transaction_hash: Optional[str] = None
    completed_at: Optional[datetime] = None
    items: List[ConfirmedItem] = []
    total_amount: float
    platform_fee: float
    blockchain: BlockchainProof

class ProductSnapshot(ApiModel):
    name: str
    description: str
    thumbnail: Optional[str] = None
    has_files: bool = False

class HistoryItem(ApiModel):
    product_id: str
    price: float
    product: Optional[ProductSnapshot] = None

class PurchaseHistoryEntry(ApiModel):
    purchase_id: str
    status: PurchaseStatus
    total_amount: float
    platform_fee: float
    created_at: datetime
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    items: List[HistoryItem]

class PurchaseHistorySummary(ApiModel):
    total_purchases: int
    completed_purchases: int
    pending_purchases: int
    total_spent: float

class PurchaseHistory(ApiModel):
    purchases: List[PurchaseHistoryEntry]
    summary: PurchaseHistorySummary
