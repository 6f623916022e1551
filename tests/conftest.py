"""
Shared pytest fixtures.

Provides an in-memory stand-in for the Motor database, a fake marketplace
contract, seeded buyer/seller/product documents and a TestClient wired to
them through dependency overrides.
"""

import copy
import os
import re
import uuid
from datetime import datetime
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# TEST-ONLY settings; must be set before farfield modules are imported
os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "farfield_test")
os.environ.setdefault("PRIVY_APP_ID", "test-app-id")

from fastapi.testclient import TestClient  # noqa: E402

from farfield.db.session import get_db  # noqa: E402
from farfield.models.product import Product  # noqa: E402
from farfield.models.user import FarcasterProfile, User, Wallet  # noqa: E402
from farfield.services.auth import AuthenticatedUser, get_current_user, get_current_user_optional  # noqa: E402
from farfield.services.blockchain import (  # noqa: E402
    CostBreakdown,
    OnChainPurchase,
    ReceiptStatus,
    get_marketplace_contract,
)
from farfield.services.rate_limit import InMemoryRateLimitStore, get_rate_limit_store  # noqa: E402
from server import app  # noqa: E402

CONTRACT_ADDRESS = "0xAe8b2B4285776DbfD9972E1586F423701C6761B9"
BUYER_WALLET = "0xabc0000000000000000000000000000000000123"
SELLER_WALLET = "0x1111111111111111111111111111111111111111"
TX_HASH = "0x" + "ab" * 32


# =============================================================================
# In-memory database
# =============================================================================


def _resolve(value: Any, parts: List[str]) -> List[Any]:
    if not parts:
        return [value]
    if isinstance(value, list):
        return [v for item in value for v in _resolve(item, parts)]
    if isinstance(value, dict) and parts[0] in value:
        return _resolve(value[parts[0]], parts[1:])
    return []


def _candidates(values: List[Any]) -> List[Any]:
    flat = []
    for value in values:
        flat.append(value)
        if isinstance(value, list):
            flat.extend(value)
    return flat


def _compare(values: List[Any], op: str, operand: Any) -> bool:
    checks = {
        "$lt": lambda v: v < operand,
        "$lte": lambda v: v <= operand,
        "$gt": lambda v: v > operand,
        "$gte": lambda v: v >= operand,
    }
    return any(v is not None and checks[op](v) for v in _candidates(values))


def _match_condition(values: List[Any], condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$in":
                if not any(v in operand for v in _candidates(values)):
                    return False
            elif op == "$nin":
                if any(v in operand for v in _candidates(values)):
                    return False
            elif op == "$ne":
                if any(v == operand for v in _candidates(values)):
                    return False
            elif op == "$exists":
                if bool(values) != bool(operand):
                    return False
            elif op == "$regex":
                flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
                if not any(isinstance(v, str) and re.search(operand, v, flags) for v in _candidates(values)):
                    return False
            elif op == "$options":
                continue
            elif op in ("$lt", "$lte", "$gt", "$gte"):
                if not _compare(values, op, operand):
                    return False
            else:
                raise NotImplementedError(op)
        return True
    return any(v == condition for v in _candidates(values))


def matches(document: Dict, query: Dict) -> bool:
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(document, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(document, sub) for sub in condition):
                return False
        elif not _match_condition(_resolve(document, key.split(".")), condition):
            return False
    return True


def _set_path(document: Dict, path: str, value: Any) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        document = document.setdefault(part, {})
    document[parts[-1]] = value


def _get_path(document: Dict, path: str) -> Any:
    for part in path.split("."):
        if not isinstance(document, dict) or part not in document:
            return None
        document = document[part]
    return document


def _unset_path(document: Dict, path: str) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        document = document.get(part, {})
    document.pop(parts[-1], None)


def apply_update(document: Dict, update: Dict, inserting: bool = False) -> None:
    for op, fields in update.items():
        for path, value in fields.items():
            if op == "$set":
                _set_path(document, path, copy.deepcopy(value))
            elif op == "$setOnInsert":
                if inserting:
                    _set_path(document, path, copy.deepcopy(value))
            elif op == "$unset":
                _unset_path(document, path)
            elif op == "$inc":
                _set_path(document, path, (_get_path(document, path) or 0) + value)
            elif op == "$push":
                current = _get_path(document, path) or []
                _set_path(document, path, current + [copy.deepcopy(value)])
            elif op == "$addToSet":
                current = _get_path(document, path) or []
                if value not in current:
                    current = current + [copy.deepcopy(value)]
                _set_path(document, path, current)
            else:
                raise NotImplementedError(op)


class FakeCursor:
    def __init__(self, documents: List[Dict]):
        self._documents = documents
        self._skip = 0
        self._limit: Optional[int] = None

    def sort(self, key: str, direction: int = 1) -> "FakeCursor":
        present = [d for d in self._documents if _get_path(d, key) is not None]
        missing = [d for d in self._documents if _get_path(d, key) is None]
        present.sort(key=lambda d: _get_path(d, key), reverse=direction < 0)
        self._documents = present + missing
        return self

    def skip(self, count: int) -> "FakeCursor":
        self._skip = count
        return self

    def limit(self, count: int) -> "FakeCursor":
        self._limit = count or None
        return self

    async def to_list(self, length: Optional[int] = None) -> List[Dict]:
        documents = self._documents[self._skip:]
        for bound in (self._limit, length):
            if bound:
                documents = documents[:bound]
        return [copy.deepcopy(d) for d in documents]


class FakeCollection:
    """Implements the subset of the Motor collection API the service uses."""

    def __init__(self, name: str):
        self.name = name
        self.documents: List[Dict] = []
        self.indexes: List[Any] = []

    def seed(self, *documents: Dict) -> None:
        for document in documents:
            stored = copy.deepcopy(document)
            stored.setdefault("_id", uuid.uuid4().hex)
            self.documents.append(stored)

    def _find(self, query: Dict) -> List[Dict]:
        return [d for d in self.documents if matches(d, query)]

    async def insert_one(self, document: Dict):
        stored = copy.deepcopy(document)
        stored.setdefault("_id", uuid.uuid4().hex)
        self.documents.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def find_one(self, query: Optional[Dict] = None, *args, **kwargs):
        found = self._find(query or {})
        return copy.deepcopy(found[0]) if found else None

    def find(self, query: Optional[Dict] = None, *args, **kwargs) -> FakeCursor:
        return FakeCursor(self._find(query or {}))

    async def count_documents(self, query: Dict) -> int:
        return len(self._find(query))

    def _upsert(self, query: Dict, update: Dict) -> Dict:
        document = {k: copy.deepcopy(v) for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
        document.setdefault("_id", uuid.uuid4().hex)
        apply_update(document, update, inserting=True)
        self.documents.append(document)
        return document

    async def update_one(self, query: Dict, update: Dict, upsert: bool = False):
        found = self._find(query)
        if not found:
            if upsert:
                document = self._upsert(query, update)
                return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=document["_id"])
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
        apply_update(found[0], update)
        return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)

    async def update_many(self, query: Dict, update: Dict):
        found = self._find(query)
        for document in found:
            apply_update(document, update)
        return SimpleNamespace(matched_count=len(found), modified_count=len(found))

    async def find_one_and_update(self, query: Dict, update: Dict, upsert: bool = False, return_document: Any = False, **kwargs):
        found = self._find(query)
        if not found:
            if upsert:
                document = self._upsert(query, update)
                return copy.deepcopy(document) if return_document else None
            return None
        before = copy.deepcopy(found[0])
        apply_update(found[0], update)
        return copy.deepcopy(found[0]) if return_document else before

    async def delete_many(self, query: Dict):
        found = self._find(query)
        found_ids = {id(d) for d in found}
        self.documents = [d for d in self.documents if id(d) not in found_ids]
        return SimpleNamespace(deleted_count=len(found))

    async def create_index(self, keys: Any, **kwargs):
        self.indexes.append((keys, kwargs))
        return kwargs.get("name", str(keys))


class FakeDatabase:
    def __init__(self):
        self._collections: Dict[str, FakeCollection] = {}

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]


# =============================================================================
# Fake marketplace contract
# =============================================================================


class FakeMarketplaceContract:
    """Charges a 5% platform fee on top of the item prices."""

    contract_address = CONTRACT_ADDRESS

    def __init__(self):
        self.calculate_purchase_cost = AsyncMock(side_effect=self._cost)
        self.get_receipt_status = AsyncMock(return_value=ReceiptStatus.SUCCESS)
        self.verify_purchase = AsyncMock(return_value=OnChainPurchase(
            exists=False, buyer="0x" + "0" * 40, total_amount=0, timestamp=0, refunded=False,
        ))
        self.build_purchase_transaction = MagicMock(side_effect=lambda purchase_id, prices, sellers: {
            "to": CONTRACT_ADDRESS,
            "data": "0x" + "de" * 36,
            "value": "0x0",
        })

    @staticmethod
    async def _cost(prices):
        total = sum(prices)
        fee = total // 20
        return CostBreakdown(total_user_pays=total + fee, platform_fee=fee, total_to_sellers=total)

    def record_on_chain(self, buyer: str, total_amount: int, refunded: bool = False, exists: bool = True, timestamp: int = 1735689600):
        self.verify_purchase.return_value = OnChainPurchase(
            exists=exists, buyer=buyer, total_amount=total_amount, timestamp=timestamp, refunded=refunded,
        )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def contract():
    return FakeMarketplaceContract()


@pytest.fixture
def buyer():
    return User(
        privy_id="did:privy:buyer",
        farcaster_fid=100,
        farcaster=FarcasterProfile(username="alice", display_name="Alice"),
        wallets=[Wallet(address=BUYER_WALLET)],
    )


@pytest.fixture
def seller():
    return User(
        privy_id="did:privy:seller",
        farcaster_fid=200,
        farcaster=FarcasterProfile(username="bob", display_name="Bob"),
        wallets=[Wallet(address=SELLER_WALLET)],
    )


@pytest.fixture
def product():
    return Product(
        id="P1",
        name="Icon Pack",
        description="200 hand-drawn icons",
        price=10.0,
        creator_fid=200,
        images=["https://cdn.example.com/icons.png"],
        created_at=datetime(2025, 1, 1),
    )


@pytest.fixture
def second_product():
    return Product(
        id="P2",
        name="Notion Template",
        description="Project planner",
        price=4.99,
        creator_fid=200,
        created_at=datetime(2025, 1, 2),
    )


@pytest.fixture
def seeded_db(db, buyer, seller, product, second_product):
    db.users.seed(buyer.model_dump(), seller.model_dump())
    db.products.seed(product.model_dump(), second_product.model_dump())
    return db


@pytest.fixture
def auth_as():
    """Switch the authenticated Privy identity used by the client"""
    def _set(privy_id: str):
        identity = AuthenticatedUser(privy_id=privy_id, session_id="test-session", app_id="test-app-id")
        app.dependency_overrides[get_current_user] = lambda: identity
        app.dependency_overrides[get_current_user_optional] = lambda: identity
    return _set


@pytest.fixture
def client(seeded_db, contract, auth_as):
    store = InMemoryRateLimitStore()
    app.dependency_overrides[get_db] = lambda: seeded_db
    app.dependency_overrides[get_marketplace_contract] = lambda: contract
    app.dependency_overrides[get_rate_limit_store] = lambda: store
    auth_as("did:privy:buyer")
    yield TestClient(app)
    app.dependency_overrides.clear()
