"""
Marketplace contract client.

Reads the cost breakdown and purchase records from the Farfield marketplace
contract on Base, checks transaction receipts, and encodes the
``processPurchase`` call that buyers sign client-side. Nothing here sends a
transaction.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from farfield.core.config import settings
from farfield.core.errors import BlockchainError

logger = logging.getLogger(__name__)

USDC_DECIMALS = 6
USDC_SCALE = Decimal(10) ** USDC_DECIMALS

FARFIELD_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "string", "name": "purchaseId", "type": "string"},
            {"internalType": "uint256[]", "name": "productPrices", "type": "uint256[]"},
            {"internalType": "address[]", "name": "sellerAddresses", "type": "address[]"},
        ],
        "name": "processPurchase",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256[]", "name": "productPrices", "type": "uint256[]"},
        ],
        "name": "calculatePurchaseCost",
        "outputs": [
            {"internalType": "uint256", "name": "totalUserPays", "type": "uint256"},
            {"internalType": "uint256", "name": "platformFee", "type": "uint256"},
            {"internalType": "uint256", "name": "totalToSellers", "type": "uint256"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "string", "name": "purchaseId", "type": "string"},
        ],
        "name": "verifyPurchase",
        "outputs": [
            {"internalType": "bool", "name": "exists", "type": "bool"},
            {"internalType": "address", "name": "buyer", "type": "address"},
            {"internalType": "uint256", "name": "totalAmount", "type": "uint256"},
            {"internalType": "uint256", "name": "timestamp", "type": "uint256"},
            {"internalType": "bool", "name": "refunded", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
]


def to_usdc_units(amount: float) -> int:
    """Convert a dollar amount to integer USDC units (6 decimals), rounding half up."""
    scaled = Decimal(str(amount)) * USDC_SCALE
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_usdc_units(units: int) -> float:
    """Convert integer USDC units back to dollars."""
    return float(Decimal(int(units)) / USDC_SCALE)


@dataclass
class CostBreakdown:
    """Result of ``calculatePurchaseCost`` in USDC units."""

    total_user_pays: int
    platform_fee: int
    total_to_sellers: int


@dataclass
class OnChainPurchase:
    """Result of ``verifyPurchase``."""

    exists: bool
    buyer: str
    total_amount: int
    timestamp: int
    refunded: bool


class ReceiptStatus:
    SUCCESS = "success"
    REVERTED = "reverted"
    NOT_FOUND = "not_found"
    WRONG_CONTRACT = "wrong_contract"


class MarketplaceContract:
    """
    Read-only access to the marketplace contract.

    The Web3 instance is created lazily so constructing the client never
    touches the network.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        w3: Optional[AsyncWeb3] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.contract_address = Web3.to_checksum_address(contract_address)
        self._w3 = w3
        self._contract: Any = None

    def _get_w3(self) -> AsyncWeb3:
        if self._w3 is None:
            self._w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_url))
        return self._w3

    def _get_contract(self) -> Any:
        if self._contract is None:
            self._contract = self._get_w3().eth.contract(
                address=self.contract_address, abi=FARFIELD_ABI
            )
        return self._contract

    async def calculate_purchase_cost(self, product_prices: List[int]) -> CostBreakdown:
        """Split the item prices into buyer total, platform fee and seller payout."""
        try:
            result = await self._get_contract().functions.calculatePurchaseCost(
                [int(price) for price in product_prices]
            ).call()
        except Exception as e:
            raise BlockchainError(f"Failed to calculate purchase cost: {e}") from e

        return CostBreakdown(
            total_user_pays=int(result[0]),
            platform_fee=int(result[1]),
            total_to_sellers=int(result[2]),
        )

    async def verify_purchase(self, purchase_id: str) -> OnChainPurchase:
        try:
            result = await self._get_contract().functions.verifyPurchase(purchase_id).call()
        except Exception as e:
            raise BlockchainError(f"Failed to verify purchase: {e}") from e

        return OnChainPurchase(
            exists=bool(result[0]),
            buyer=str(result[1]),
            total_amount=int(result[2]),
            timestamp=int(result[3]),
            refunded=bool(result[4]),
        )

    async def get_receipt_status(self, transaction_hash: str) -> str:
        """Return the receipt status of a transaction (see ReceiptStatus)."""
        w3 = self._get_w3()
        try:
            receipt = await w3.eth.get_transaction_receipt(transaction_hash)
        except TransactionNotFound:
            return ReceiptStatus.NOT_FOUND
        except Exception as e:
            raise BlockchainError(f"Failed to get transaction receipt: {e}") from e

        if receipt is None:
            return ReceiptStatus.NOT_FOUND
        # Only receipts addressed to the marketplace contract count
        recipient = receipt.get("to")
        if not recipient or recipient.lower() != self.contract_address.lower():
            return ReceiptStatus.WRONG_CONTRACT
        return ReceiptStatus.SUCCESS if receipt["status"] == 1 else ReceiptStatus.REVERTED

    def build_purchase_transaction(
        self,
        purchase_id: str,
        product_prices: List[int],
        seller_addresses: List[str],
    ) -> Dict[str, str]:
        """Encode the processPurchase call. Payment moves through the USDC allowance, so no value is sent."""
        try:
            data = self._get_contract().encode_abi(
                "processPurchase",
                args=[
                    purchase_id,
                    [int(price) for price in product_prices],
                    [Web3.to_checksum_address(address) for address in seller_addresses],
                ],
            )
        except Exception as e:
            raise BlockchainError(f"Failed to generate purchase transaction: {e}") from e

        return {
            "to": self.contract_address,
            "data": data,
            "value": "0x0",
        }


_contract: Optional[MarketplaceContract] = None


def get_marketplace_contract() -> MarketplaceContract:
    global _contract
    if _contract is None:
        _contract = MarketplaceContract(
            rpc_url=settings.BASE_RPC_URL,
            contract_address=settings.FARFIELD_CONTRACT_ADDRESS,
        )
        logger.info(f"Marketplace contract client created for {settings.NETWORK_NAME} at {_contract.contract_address}")
    return _contract
