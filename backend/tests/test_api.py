"""HTTP surface: envelopes, auth headers, and error → status mapping."""

import httpx
import pytest

from librarease.main import create_app


@pytest.fixture
async def http(services):
    app = create_app(services)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


def as_user(user):
    return {"X-User-Id": str(user.id)}


async def test_health_reports_hub_state(http):
    resp = await http.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["hub"] == {"listening": False, "subscribers": 0}


async def test_missing_credentials_are_unauthorized(http):
    resp = await http.get("/api/v1/borrowings")
    assert resp.status_code == 401
    assert resp.json()["error"] == "unauthorized"


async def test_bearer_token_resolves_through_identity(http, repo, identity, world):
    identity.tokens["tok"] = f"uid-{world.reader.id}"
    resp = await http.get("/api/v1/notifications", headers={"Authorization": "Bearer tok"})
    assert resp.status_code == 200
    assert resp.json()["meta"] == {"total": 0, "skip": 0, "limit": 20, "unread": 0}

    resp = await http.get("/api/v1/notifications", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


async def test_register_creates_user_and_claims(http, repo, identity):
    resp = await http.post("/api/v1/auth/register", json={
        "name": "Nina", "email": "nina@example.com", "password": "s3cret",
    })
    assert resp.status_code == 201
    user_id = resp.json()["data"]["id"]
    assert identity.claims["uid-1"] == {"id": user_id, "role": "USER"}


async def test_book_lifecycle_and_conflicts(http, world):
    clerk = as_user(world.clerk)
    body = {"library_id": str(world.library.id), "code": "B-1", "title": "Beloved", "author": "Toni Morrison"}

    created = await http.post("/api/v1/books", json=body, headers=clerk)
    assert created.status_code == 201
    assert created.json()["data"]["code"] == "B-1"

    duplicate = await http.post("/api/v1/books", json=body, headers=clerk)
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "book_code_taken"

    missing = await http.get("/api/v1/books/00000000-0000-0000-0000-000000000000", headers=clerk)
    assert missing.status_code == 404
    assert missing.json()["error"] == "book_not_found"


async def test_borrow_and_return_over_http(http, repo, world):
    clerk = as_user(world.clerk)
    admin = as_user(world.admin)
    book = repo.add_book(world.library, "K1")
    plan = await http.post("/api/v1/memberships", headers=admin, json={
        "library_id": str(world.library.id), "name": "Basic",
        "duration": 30, "active_loan_limit": 1, "loan_period": 7, "fine_per_day": 500,
    })
    assert plan.status_code == 201
    sub = await http.post("/api/v1/subscriptions", headers=clerk, json={
        "user_id": str(world.reader.id), "membership_id": plan.json()["data"]["id"],
    })
    assert sub.status_code == 201
    sub_id = sub.json()["data"]["id"]

    borrowed = await http.post("/api/v1/borrowings", headers=clerk,
                               json={"book_id": str(book.id), "subscription_id": sub_id})
    assert borrowed.status_code == 201
    borrowing = borrowed.json()["data"]
    assert borrowing["status"] == "Active"

    again = await http.post("/api/v1/borrowings", headers=clerk,
                            json={"book_id": str(book.id), "subscription_id": sub_id})
    assert again.status_code == 400
    assert again.json()["error"] == "active_loan_limit_reached"

    mine = await http.get("/api/v1/borrowings", headers=as_user(world.reader))
    assert mine.json()["meta"]["total"] == 1

    returned = await http.post(f"/api/v1/borrowings/{borrowing['id']}/return", headers=clerk, json={})
    assert returned.status_code == 200
    assert returned.json()["data"]["status"] == "Returned"

    twice = await http.post(f"/api/v1/borrowings/{borrowing['id']}/return", headers=clerk, json={})
    assert twice.json()["error"] == "already_returned"


async def test_invalid_body_is_unprocessable(http, world):
    resp = await http.post("/api/v1/memberships", headers=as_user(world.admin), json={"name": "x"})
    assert resp.status_code == 422


async def test_reader_cannot_create_memberships(http, world):
    resp = await http.post("/api/v1/memberships", headers=as_user(world.reader), json={
        "library_id": str(world.library.id), "name": "Gold",
        "duration": 30, "active_loan_limit": 3, "loan_period": 7,
    })
    assert resp.status_code == 401


async def test_import_preview_upload(http, world):
    files = {"file": ("books.csv", b"id,code,title,author,year\n,N1,Neuromancer,Gibson,1984\n", "text/csv")}
    resp = await http.post(
        "/api/v1/books/import", headers=as_user(world.clerk),
        data={"library_id": str(world.library.id)}, files=files,
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["summary"] == {"created": 1, "updated": 0, "invalid": 0}

    confirm = await http.post("/api/v1/books/import/confirm", headers=as_user(world.clerk), json={
        "library_id": str(world.library.id), "path": data["path"],
    })
    assert confirm.status_code == 201
    assert confirm.json()["data"]["status"] == "PENDING"


async def test_temp_upload_url(http, world):
    resp = await http.post("/api/v1/files/upload", headers=as_user(world.clerk), json={"name": "../cover.png"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["path"].endswith("/cover.png")
    assert data["url"].startswith("https://")


async def test_me_is_not_shadowed_by_user_id_route(http, world):
    resp = await http.get("/api/v1/users/me", headers=as_user(world.clerk))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["user"]["id"] == str(world.clerk.id)
    assert [s["role"] for s in data["staffs"]] == ["STAFF"]


async def test_staff_assignment_over_http(http, world, identity):
    body = {"library_id": str(world.library.id), "user_id": str(world.reader.id)}
    created = await http.post("/api/v1/staffs", headers=as_user(world.admin), json=body)
    assert created.status_code == 201
    assert created.json()["data"]["name"] == "Rita"
    assert identity.claims[f"uid-{world.reader.id}"]["staff_libs"] == [str(world.library.id)]

    duplicate = await http.post("/api/v1/staffs", headers=as_user(world.admin), json=body)
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "staff_already_exists"

    bad_role = await http.post("/api/v1/staffs", headers=as_user(world.admin), json={**body, "role": "OWNER"})
    assert bad_role.status_code == 422


async def test_library_writes_need_library_admin(http, world):
    path = f"/api/v1/libraries/{world.library.id}"
    assert (await http.put(path, headers=as_user(world.clerk), json={"name": "X"})).status_code == 401
    resp = await http.put(path, headers=as_user(world.admin), json={"name": "Central Hall"})
    assert resp.json()["data"]["name"] == "Central Hall"

    created = await http.post("/api/v1/libraries", headers=as_user(world.superadmin), json={"name": "Annex"})
    assert created.status_code == 201
    listing = await http.get("/api/v1/libraries", headers=as_user(world.reader), params={"name": "annex"})
    assert listing.json()["meta"]["total"] == 1


async def test_collection_books_over_http(http, repo, world):
    clerk = as_user(world.clerk)
    book = repo.add_book(world.library, "C1", title="Coraline")
    created = await http.post("/api/v1/collections", headers=clerk, json={
        "library_id": str(world.library.id), "title": "Spooky",
    })
    assert created.status_code == 201
    books_path = f"/api/v1/collections/{created.json()['data']['id']}/books"

    put = await http.put(books_path, headers=clerk, json={"book_ids": [str(book.id), str(book.id)]})
    assert put.status_code == 200
    assert put.json()["meta"] == {"total": 1}

    listing = await http.get(books_path, headers=as_user(world.reader))
    assert [link["book"]["title"] for link in listing.json()["data"]] == ["Coraline"]


async def test_watchlist_over_http(http, repo, world):
    reader = as_user(world.reader)
    book = repo.add_book(world.library, "W1")

    added = await http.post("/api/v1/users/me/watchlist", headers=reader, json={"book_id": str(book.id)})
    assert added.status_code == 201
    again = await http.post("/api/v1/users/me/watchlist", headers=reader, json={"book_id": str(book.id)})
    assert again.json()["error"] == "already_in_watchlist"

    removed = await http.delete(f"/api/v1/users/me/watchlist/{book.id}", headers=reader)
    assert removed.json()["message"] == "removed from watchlist"
    missing = await http.delete(f"/api/v1/users/me/watchlist/{book.id}", headers=reader)
    assert missing.status_code == 404


async def test_reviews_over_http(http, services, repo, world):
    plan = repo.add_membership(world.library)
    sub = await services.subscriptions.create_subscription(world.actor(world.admin), world.reader.id, plan.id)
    borrowing = await services.loans.create_borrowing(
        world.actor(world.clerk), repo.add_book(world.library, "R1").id, sub.id,
    )
    reader = as_user(world.reader)

    too_high = await http.post("/api/v1/reviews", headers=reader, json={"borrowing_id": str(borrowing.id), "rating": 6})
    assert too_high.status_code == 422
    created = await http.post("/api/v1/reviews", headers=reader, json={"borrowing_id": str(borrowing.id), "rating": 5})
    assert created.status_code == 201
    twice = await http.post("/api/v1/reviews", headers=reader, json={"borrowing_id": str(borrowing.id), "rating": 4})
    assert twice.json()["error"] == "book_already_reviewed"

    listing = await http.get("/api/v1/reviews", headers=reader, params={"book_id": str(borrowing.book_id)})
    assert listing.json()["meta"]["total"] == 1
