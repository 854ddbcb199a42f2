import pytest

from marketplace.core.errors import ValidationError
from marketplace.services.products_service import average_rating, build_search_query, validate_price

from conftest import PRICE, add_order, add_product


def test_validate_price_accepts_money_values():
    assert validate_price({"complete_fiture": "10.50", "basic_fiture": 5, "prototype_fiture": 0}) == {
        "complete_fiture": 10.5,
        "basic_fiture": 5.0,
        "prototype_fiture": 0.0,
    }


@pytest.mark.parametrize("price", [
    None,
    {"complete_fiture": 10, "basic_fiture": 5},
    {"complete_fiture": 10, "basic_fiture": 5, "prototype_fiture": -1},
    {"complete_fiture": 10.123, "basic_fiture": 5, "prototype_fiture": 1},
    {"complete_fiture": "ten", "basic_fiture": 5, "prototype_fiture": 1},
])
def test_validate_price_rejects(price):
    with pytest.raises(ValidationError):
        validate_price(price)


def test_validate_price_negative_message():
    with pytest.raises(ValidationError) as exc:
        validate_price({"complete_fiture": 10, "basic_fiture": -5, "prototype_fiture": 0})
    assert exc.value.message == "basic_fiture must be a non-negative number"


def test_average_rating():
    assert average_rating([]) == 0
    assert average_rating([5, 3, 4]) == 4.0
    assert average_rating([5, 4]) == 4.5
    assert average_rating([5, 5, 4]) == 4.7


def test_search_query_filters_basic_tier():
    query = build_search_query(query="logo", tags="web, design", min_price=100, max_price=500)
    assert query["price.basic_fiture"] == {"$gte": 100.0, "$lte": 500.0}
    assert query["tags"] == {"$in": ["web", "design"]}
    assert len(query["$or"]) == 2


def _payload(category_id, **overrides):
    body = {
        "name": "Company profile",
        "description": "Five page company website",
        "category": str(category_id),
        "price": dict(PRICE),
        "tags": ["web"],
        "type": "service",
        "image": "data:image/png;base64,AAAA",
        "thumbnail": "https://example.com/thumb.png",
    }
    body.update(overrides)
    return body


def test_seller_creates_product(client, db, media, as_user):
    seller, headers = as_user("seller")
    category = db.categories.add({"name": "Web"})

    res = client.post("/api/v1/products/create", json=_payload(category["_id"]), headers=headers)

    assert res.status_code == 201
    product = res.json()["product"]
    assert product["seller"] == str(seller["_id"])
    assert product["rating"] == 0
    assert product["image"]["public_id"].startswith("image products/")
    assert [u["width"] for u in media.uploaded] == [500, 150]
    assert db.notifications.docs[0]["title"] == "Product Created"


def test_create_product_checks(client, db, as_user):
    _, user_headers = as_user()
    seller, seller_headers = as_user("seller")
    category = db.categories.add({"name": "Web"})

    res = client.post("/api/v1/products/create", json=_payload(category["_id"]), headers=user_headers)
    assert res.status_code == 403

    bad_price = _payload(category["_id"], price={"complete_fiture": 1, "basic_fiture": 1})
    assert client.post("/api/v1/products/create", json=bad_price, headers=seller_headers).status_code == 400

    missing_category = _payload("65f000000000000000000000")
    assert client.post("/api/v1/products/create", json=missing_category, headers=seller_headers).status_code == 404

    # a stale session claiming seller is re-checked against the stored role
    db.users.get(seller["_id"])["role"] = "user"
    res = client.post("/api/v1/products/create", json=_payload(category["_id"]), headers=seller_headers)
    assert res.status_code == 403
    assert res.json()["message"] == "Only sellers can add products."


def test_create_and_update_reject_unhosted_images(client, db, media, as_user):
    seller, headers = as_user("seller")
    category = db.categories.add({"name": "Web"})

    res = client.post("/api/v1/products/create", json=_payload(category["_id"], image="logo.png"), headers=headers)
    assert res.status_code == 400
    assert res.json()["message"] == "image must be a data URI or an http(s) URL"
    assert db.products.docs == []
    assert media.uploaded == []

    product = add_product(db, seller)
    res = client.put(f"/api/v1/products/{product['_id']}", json={"thumbnail": "thumb.png"}, headers=headers)
    assert res.status_code == 400
    assert res.json()["message"] == "thumbnail must be a data URI or an http(s) URL"


def test_create_without_images(client, db, media, as_user):
    _, headers = as_user("seller")
    category = db.categories.add({"name": "Web"})
    body = _payload(category["_id"])
    del body["image"], body["thumbnail"]

    res = client.post("/api/v1/products/create", json=body, headers=headers)

    assert res.status_code == 201
    assert res.json()["product"]["image"] == {}
    assert media.uploaded == []


def test_update_and_toggle_by_owner_only(client, db, cache, media, as_user):
    seller, headers = as_user("seller")
    _, other_headers = as_user("seller")
    product = add_product(db, seller, image={"public_id": "image products/old", "url": "x"})

    res = client.put(f"/api/v1/products/{product['_id']}", json={"name": "Renamed"}, headers=other_headers)
    assert res.status_code == 403

    res = client.put(f"/api/v1/products/{product['_id']}",
                     json={"name": "Renamed", "image": "data:image/png;base64,BBBB"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["product"]["name"] == "Renamed"
    assert media.destroyed == ["image products/old"]
    assert f"product_{product['_id']}" in cache.store

    res = client.patch(f"/api/v1/products/{product['_id']}/availability", headers=headers)
    assert res.json()["available"] is False
    assert db.products.get(product["_id"])["available"] is False


def test_get_product_is_cached(client, db, cache, as_user):
    seller, _ = as_user("seller")
    product = add_product(db, seller)

    res = client.get(f"/api/v1/products/{product['_id']}")
    assert res.status_code == 200
    assert f"product_{product['_id']}" in cache.store

    db.products.get(product["_id"])["name"] = "Changed behind the cache"
    assert client.get(f"/api/v1/products/{product['_id']}").json()["product"]["name"] == "Landing page"

    assert client.get("/api/v1/products/65f000000000000000000000").status_code == 404


def test_listings_are_paginated(client, db, as_user):
    seller, headers = as_user("seller")
    first = add_product(db, seller)
    for n in range(2):
        add_product(db, seller, name=f"Logo {n}", tags=["design"], category=first["category"])

    res = client.get("/api/v1/products/all?page=1&limit=2").json()
    assert len(res["products"]) == 2
    assert res["pagination"] == {"currentPage": 1, "totalPages": 2, "total": 3}
    assert res["products"][0]["sellerInfo"]["_id"] == str(seller["_id"])

    res = client.get("/api/v1/products/search?query=logo").json()
    assert res["pagination"]["total"] == 2

    res = client.get(f"/api/v1/products/category/{first['category']}").json()
    assert res["pagination"]["total"] == 3

    res = client.get("/api/v1/products/seller/my-products", headers=headers).json()
    assert res["pagination"]["total"] == 3


def test_delete_product_cascades(client, db, cache, media, as_user):
    seller, headers = as_user("seller")
    buyer, _ = as_user()
    product = add_product(db, seller, thumbnail={"public_id": "thumbnail products/1", "url": "x"})
    keep = add_product(db, seller, name="Other")
    order = add_order(db, buyer, product, status="Completed")
    kept_order = add_order(db, buyer, keep)
    db.reviews.add({"productId": product["_id"], "userId": buyer["_id"], "orderId": order["_id"], "rating": 5})
    db.notifications.add({"userId": buyer["_id"], "relatedId": order["_id"], "type": "order"})
    db.notifications.add({"userId": seller["_id"], "relatedId": product["_id"], "type": "system"})
    db.notifications.add({"userId": buyer["_id"], "relatedId": kept_order["_id"], "type": "order"})
    cache.store[f"product_{product['_id']}"] = "{}"

    res = client.delete(f"/api/v1/products/{product['_id']}", headers=headers)

    assert res.status_code == 200
    assert res.json()["deleted"] == {"reviews": 1, "orders": 1, "notifications": 2}
    assert db.products.get(product["_id"]) is None
    assert db.reviews.docs == []
    assert [o["_id"] for o in db.orders.docs] == [kept_order["_id"]]
    assert [o["orderId"] for o in db.users.get(buyer["_id"])["orders"]] == [kept_order["_id"]]
    assert len(db.notifications.docs) == 1
    assert media.destroyed == ["thumbnail products/1"]
    assert f"product_{product['_id']}" not in cache.store


def test_delete_product_permissions(client, db, as_user):
    seller, _ = as_user("seller")
    _, other_headers = as_user("seller")
    _, admin_headers = as_user("admin")
    product = add_product(db, seller)

    assert client.delete(f"/api/v1/products/{product['_id']}", headers=other_headers).status_code == 403
    assert client.delete(f"/api/v1/products/{product['_id']}", headers=admin_headers).status_code == 200
