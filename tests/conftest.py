import copy
import itertools
import json
import re
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from marketplace.api import deps
from marketplace.core import security
from marketplace.main import app
from marketplace.services import orders_service
from marketplace.services.mail import render_template
from marketplace.utils import public_user, utcnow

_MISSING = object()

UNIQUE_KEYS = {
    "users": [("email",)],
    "categories": [("name",)],
    "orders": [("transactionId",)],
    "payments": [("transactionId",)],
    "reviews": [("productId", "userId")],
}


# --- In-memory document store ---
def _resolve(value, parts):
    if not parts:
        return [value]
    if isinstance(value, dict):
        if parts[0] in value:
            return _resolve(value[parts[0]], parts[1:])
        return [_MISSING]
    if isinstance(value, list):
        out = []
        for item in value:
            out.extend(_resolve(item, parts))
        return out or [_MISSING]
    return [_MISSING]


def _eq(candidate, expected):
    if candidate is _MISSING:
        return expected is None
    if candidate == expected:
        return True
    return isinstance(candidate, list) and expected in candidate


def _compare(candidate, op, expected):
    if candidate is _MISSING or candidate is None:
        return False
    try:
        return {
            "$lt": candidate < expected,
            "$lte": candidate <= expected,
            "$gt": candidate > expected,
            "$gte": candidate >= expected,
        }[op]
    except TypeError:
        return False


def _match_condition(candidates, cond):
    if not (isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond)):
        return any(_eq(c, cond) for c in candidates)

    for op, expected in cond.items():
        if op == "$options":
            continue
        if op == "$in":
            ok = any(_eq(c, v) for c in candidates for v in expected)
        elif op == "$nin":
            ok = not any(_eq(c, v) for c in candidates for v in expected)
        elif op == "$ne":
            ok = not any(_eq(c, expected) for c in candidates)
        elif op in ("$lt", "$lte", "$gt", "$gte"):
            ok = any(_compare(c, op, expected) for c in candidates)
        elif op == "$regex":
            flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
            ok = any(isinstance(c, str) and re.search(expected, c, flags) for c in candidates)
        elif op == "$exists":
            ok = any(c is not _MISSING for c in candidates) == bool(expected)
        else:
            raise NotImplementedError(op)
        if not ok:
            return False
    return True


def matches(doc, query):
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, q) for q in cond):
                return False
        elif key == "$and":
            if not all(matches(doc, q) for q in cond):
                return False
        elif not _match_condition(_resolve(doc, key.split(".")), cond):
            return False
    return True


def _set_path(doc, path, value):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _positional_target(doc, key, query):
    """Resolve ``array.$.field`` to the first array element matched by the query."""
    array_name, field = key.split(".$.", 1)
    conditions = {k[len(array_name) + 1:]: v for k, v in query.items() if k.startswith(array_name + ".")}
    for element in doc.get(array_name, []):
        if all(_match_condition(_resolve(element, k.split(".")), v) for k, v in conditions.items()):
            return element, field
    return None, field


def apply_update(doc, update, query):
    for key, value in update.get("$set", {}).items():
        if ".$." in key:
            element, field = _positional_target(doc, key, query)
            if element is not None:
                _set_path(element, field, value)
        else:
            _set_path(doc, key, value)
    for key, value in update.get("$inc", {}).items():
        doc[key] = doc.get(key, 0) + value
    for key in update.get("$unset", {}):
        doc.pop(key, None)
    for key, value in update.get("$push", {}).items():
        doc.setdefault(key, []).append(value)
    for key, value in update.get("$addToSet", {}).items():
        items = doc.setdefault(key, [])
        if value not in items:
            items.append(value)
    for key, value in update.get("$pull", {}).items():
        items = doc.get(key, [])
        if isinstance(value, dict):
            doc[key] = [i for i in items if not (isinstance(i, dict) and matches(i, value))]
        else:
            doc[key] = [i for i in items if i != value]


def _project(doc, projection):
    doc = copy.deepcopy(doc)
    for field, flag in (projection or {}).items():
        if not flag:
            doc.pop(field, None)
    return doc


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    def sort(self, key, direction=1):
        keys = key if isinstance(key, list) else [(key, direction)]
        for field, order in reversed(keys):
            self.docs.sort(
                key=lambda d: (d.get(field) is not None, d.get(field) if d.get(field) is not None else 0),
                reverse=order < 0,
            )
        return self

    def skip(self, n):
        self.docs = self.docs[n:]
        return self

    def limit(self, n):
        if n:
            self.docs = self.docs[:n]
        return self

    async def to_list(self, length=None):
        return self.docs if length is None else self.docs[:length]


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []

    # sync helper for test setup
    def add(self, doc):
        doc = dict(doc)
        doc.setdefault("_id", ObjectId())
        doc.setdefault("createdAt", utcnow())
        doc.setdefault("updatedAt", utcnow())
        self.docs.append(copy.deepcopy(doc))
        return doc

    def get(self, _id):
        for d in self.docs:
            if d["_id"] == _id:
                return d
        return None

    def _check_unique(self, doc, ignore=None):
        for keys in UNIQUE_KEYS.get(self.name, []):
            if any(doc.get(k) is None for k in keys):
                continue
            for other in self.docs:
                if other is not ignore and all(other.get(k) == doc.get(k) for k in keys):
                    raise DuplicateKeyError(f"E11000 duplicate key {keys}")

    async def create_index(self, *args, **kwargs):
        return None

    async def find_one(self, query=None, projection=None):
        for d in self.docs:
            if matches(d, query):
                return _project(d, projection)
        return None

    def find(self, query=None, projection=None):
        return FakeCursor([_project(d, projection) for d in self.docs if matches(d, query)])

    async def count_documents(self, query):
        return sum(1 for d in self.docs if matches(d, query))

    async def insert_one(self, doc):
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query, update):
        for d in self.docs:
            if matches(d, query):
                apply_update(d, update, query)
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def update_many(self, query, update):
        hits = [d for d in self.docs if matches(d, query)]
        for d in hits:
            apply_update(d, update, query)
        return SimpleNamespace(matched_count=len(hits), modified_count=len(hits))

    async def find_one_and_update(self, query, update, return_document=False, **kwargs):
        for d in self.docs:
            if matches(d, query):
                before = copy.deepcopy(d)
                apply_update(d, update, query)
                return copy.deepcopy(d) if return_document else before
        return None

    async def delete_one(self, query):
        for i, d in enumerate(self.docs):
            if matches(d, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query):
        keep = [d for d in self.docs if not matches(d, query)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return SimpleNamespace(deleted_count=deleted)


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]


# --- Collaborators ---
class FakeCache:
    def __init__(self):
        self.store = {}
        self.expiry = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.store.pop(key, None) is not None
            self.expiry.pop(key, None)
        return removed


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.ok = True

    def send(self, to, subject, template, data):
        self.sent.append({
            "to": to,
            "subject": subject,
            "template": template,
            "data": data,
            "html": render_template(template, data),
        })
        return self.ok


class FakeMedia:
    def __init__(self):
        self.counter = itertools.count(1)
        self.uploaded = []
        self.destroyed = []

    def upload(self, image, folder, width):
        public_id = f"{folder}/{next(self.counter)}"
        self.uploaded.append({"public_id": public_id, "folder": folder, "width": width})
        return {"public_id": public_id, "url": f"https://img.example.com/{public_id}.png"}

    def destroy(self, public_id):
        self.destroyed.append(public_id)


# --- Fixtures ---
@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture(autouse=True)
def unique_transaction_ids(monkeypatch):
    """Minute-resolution ids collide inside one test run; give each order its own suffix."""
    counter = itertools.count(1)
    original = orders_service.generate_transaction_id

    def generate(now=None):
        return f"{original(now)}{next(counter):04d}"

    monkeypatch.setattr(orders_service, "generate_transaction_id", generate)


@pytest.fixture
def client(db, cache, mailer, media):
    app.dependency_overrides[deps.get_db] = lambda: db
    app.dependency_overrides[deps.get_cache] = lambda: cache
    app.dependency_overrides[deps.get_mailer] = lambda: mailer
    app.dependency_overrides[deps.get_media] = lambda: media
    yield TestClient(app)
    app.dependency_overrides.clear()


def login_as(db, cache, role="user", name=None, email=None, password_hash=None):
    """Store a user and its session; returns (user, auth headers)."""
    n = len(db.users.docs) + 1
    user = db.users.add({
        "name": name or f"{role.title()} {n}",
        "email": email or f"{role}{n}@example.com",
        "password": password_hash,
        "avatar": {},
        "role": role,
        "isVerified": True,
        "orders": [],
        "transactions": [],
    })
    cache.store[str(user["_id"])] = json.dumps(public_user(user), default=str)
    token = security.create_access_token(str(user["_id"]))
    return user, {"Authorization": f"Bearer {token}"}


@pytest.fixture
def as_user(db, cache):
    def make(role="user", **kwargs):
        return login_as(db, cache, role=role, **kwargs)

    return make


PRICE = {"complete_fiture": 2500000, "basic_fiture": 1000000, "prototype_fiture": 500000}


def add_product(db, seller, **overrides):
    category = db.categories.add({"name": f"Category {len(db.categories.docs) + 1}"})
    product = {
        "name": "Landing page",
        "description": "A responsive landing page",
        "category": category["_id"],
        "price": dict(PRICE),
        "image": {},
        "thumbnail": {},
        "tags": ["web"],
        "type": "service",
        "specifications": [],
        "reviews": [],
        "purchased": 0,
        "rating": 0,
        "available": True,
        "seller": seller["_id"],
    }
    product.update(overrides)
    return db.products.add(product)


def add_order(db, buyer, product, status="Unpaid", **overrides):
    order = {
        "productId": product["_id"],
        "userId": buyer["_id"],
        "paymentId": None,
        "packageType": "basic",
        "status": status,
        "progress": 0,
        "deliveryDate": None,
        "serviceFee": 150000,
        "adminFee": 3000,
        "totalAmount": 1000000.0,
        "transactionId": f"TRX-{ObjectId()}",
    }
    order.update(overrides)
    order = db.orders.add(order)
    summary = {"orderId": order["_id"], "productId": product["_id"], "packageType": order["packageType"],
               "status": status, "totalPrice": order["totalAmount"], "progress": order["progress"]}
    db.users.get(buyer["_id"])["orders"].append(summary)
    return order
