"""
tests/test_social.py -- Favorites, messages, notifications and reviews
"""

from database import create_document
from schemas import Notification, Review


# ── Favorites ────────────────────────────────────────────────────────


def test_add_and_list_favorites(client, renter, car, make_car, as_user):
    other = make_car(make="Mazda", model="MX-5")
    assert client.post("/api/favorites", json={"car_id": car}, headers=as_user(renter)).status_code == 201
    resp = client.post("/api/favorites", json={"car_id": other}, headers=as_user(renter))
    assert resp.status_code == 201
    assert resp.json()["favorite"]["car"]["make"] == "Mazda"

    favorites = client.get("/api/favorites", headers=as_user(renter)).json()["favorites"]
    assert [f["car_id"] for f in favorites] == [other, car]
    assert favorites[1]["car"]["model"] == "Corolla"


def test_favorite_duplicate(client, renter, car, as_user, mongo):
    client.post("/api/favorites", json={"car_id": car}, headers=as_user(renter))
    resp = client.post("/api/favorites", json={"car_id": car}, headers=as_user(renter))
    assert resp.status_code == 400
    assert resp.json() == {"error": "Car is already in favorites"}
    assert mongo["favorite"].count_documents({}) == 1


def test_favorite_requires_car(client, renter, as_user):
    resp = client.post("/api/favorites", json={}, headers=as_user(renter))
    assert resp.status_code == 400
    assert resp.json() == {"error": "Please provide car_id"}
    assert client.post("/api/favorites", json={"car_id": "65a0000000000000000000ff"}, headers=as_user(renter)).status_code == 404


def test_remove_favorite(client, renter, car, as_user, mongo):
    client.post("/api/favorites", json={"car_id": car}, headers=as_user(renter))
    resp = client.delete("/api/favorites", params={"car_id": car}, headers=as_user(renter))
    assert resp.status_code == 200
    assert mongo["favorite"].count_documents({}) == 0

    again = client.delete("/api/favorites", params={"car_id": car}, headers=as_user(renter))
    assert again.status_code == 404
    assert again.json() == {"error": "Favorite not found"}
    assert client.delete("/api/favorites", headers=as_user(renter)).status_code == 400


# ── Messages ─────────────────────────────────────────────────────────


def test_send_message_to_other_party(client, renter, host, make_booking, as_user, mongo):
    booking_id = make_booking()
    resp = client.post(
        "/api/messages",
        json={"booking_id": booking_id, "message_text": "  What time is pickup?  "},
        headers=as_user(renter),
    )
    assert resp.status_code == 201
    msg = resp.json()["message"]
    assert msg["sender_id"] == renter
    assert msg["receiver_id"] == host
    assert msg["message_text"] == "What time is pickup?"
    assert msg["is_read"] is False
    assert msg["sender"]["name"] == "Ravi Renter"
    assert msg["receiver"]["name"] == "Hana Host"

    note = mongo["notification"].find_one({"user_id": host, "type": "new_message"})
    assert note["message"] == "What time is pickup?"

    reply = client.post("/api/messages", json={"booking_id": booking_id, "message_text": "9am"}, headers=as_user(host))
    assert reply.json()["message"]["receiver_id"] == renter


def test_list_messages_oldest_first(client, renter, host, make_booking, as_user):
    booking_id = make_booking()
    client.post("/api/messages", json={"booking_id": booking_id, "message_text": "first"}, headers=as_user(renter))
    client.post("/api/messages", json={"booking_id": booking_id, "message_text": "second"}, headers=as_user(host))

    resp = client.get("/api/messages", params={"booking_id": booking_id}, headers=as_user(host))
    assert resp.status_code == 200
    assert [m["message_text"] for m in resp.json()["messages"]] == ["first", "second"]


def test_messages_restricted_to_parties(client, make_user, make_booking, as_user):
    booking_id = make_booking()
    stranger = make_user(name="Sam", email="sam@carhire.io")
    assert client.get("/api/messages", params={"booking_id": booking_id}, headers=as_user(stranger)).status_code == 403
    resp = client.post("/api/messages", json={"booking_id": booking_id, "message_text": "hi"}, headers=as_user(stranger))
    assert resp.status_code == 403


def test_message_validation(client, renter, make_booking, as_user):
    booking_id = make_booking()
    assert client.get("/api/messages", headers=as_user(renter)).status_code == 400
    resp = client.post("/api/messages", json={"booking_id": booking_id, "message_text": "   "}, headers=as_user(renter))
    assert resp.status_code == 400
    assert resp.json() == {"error": "Please provide booking_id and message_text"}
    missing = client.post(
        "/api/messages", json={"booking_id": "65a0000000000000000000ff", "message_text": "hi"}, headers=as_user(renter)
    )
    assert missing.status_code == 404


def test_mark_message_read(client, renter, host, make_booking, as_user):
    booking_id = make_booking()
    sent = client.post("/api/messages", json={"booking_id": booking_id, "message_text": "hello"}, headers=as_user(renter))
    message_id = sent.json()["message"]["id"]

    assert client.patch(f"/api/messages/{message_id}/read", headers=as_user(renter)).status_code == 403
    resp = client.patch(f"/api/messages/{message_id}/read", headers=as_user(host))
    assert resp.status_code == 200
    assert resp.json()["message"]["is_read"] is True


# ── Notifications ────────────────────────────────────────────────────


def _notify(user_id, title="Hello", is_read=False):
    return create_document("notification", Notification(user_id=user_id, type="system", title=title, is_read=is_read))


def test_list_notifications(client, renter, host, as_user):
    _notify(renter, "old", is_read=True)
    _notify(renter, "new")
    _notify(host, "not yours")

    all_notes = client.get("/api/notifications", headers=as_user(renter)).json()["notifications"]
    assert [n["title"] for n in all_notes] == ["new", "old"]
    assert "updated_at" not in all_notes[0]

    unread = client.get("/api/notifications", params={"unread_only": "true"}, headers=as_user(renter)).json()
    assert [n["title"] for n in unread["notifications"]] == ["new"]


def test_notifications_capped_at_fifty(client, renter, as_user):
    for i in range(55):
        _notify(renter, f"n{i}")
    notes = client.get("/api/notifications", headers=as_user(renter)).json()["notifications"]
    assert len(notes) == 50
    assert notes[0]["title"] == "n54"


def test_mark_notification(client, renter, host, as_user):
    note_id = _notify(renter)
    resp = client.patch("/api/notifications", json={"notification_id": note_id, "is_read": True}, headers=as_user(renter))
    assert resp.status_code == 200
    assert resp.json()["notification"]["is_read"] is True

    forbidden = client.patch("/api/notifications", json={"notification_id": note_id, "is_read": False}, headers=as_user(host))
    assert forbidden.status_code == 403


def test_mark_notification_validation(client, renter, as_user):
    note_id = _notify(renter)
    resp = client.patch("/api/notifications", json={"notification_id": note_id}, headers=as_user(renter))
    assert resp.status_code == 400
    assert resp.json() == {"error": "Please provide notification_id and is_read"}
    assert client.patch(
        "/api/notifications", json={"notification_id": note_id, "is_read": "yes"}, headers=as_user(renter)
    ).status_code == 400
    assert client.patch(
        "/api/notifications", json={"notification_id": "65a0000000000000000000ff", "is_read": True}, headers=as_user(renter)
    ).status_code == 404


# ── Reviews ──────────────────────────────────────────────────────────


def _review_payload(car, booking, **overrides):
    payload = {"car_id": car, "booking_id": booking, "rating": 4, "comment": "Smooth ride"}
    payload.update(overrides)
    return payload


def test_post_review_updates_car_rating(client, renter, car, completed_booking, make_user, as_user, mongo):
    other = make_user(name="Olga", email="olga@carhire.io")
    create_document("review", Review(user_id=other, car_id=car, booking_id=completed_booking, rating=2, comment="Meh"))

    resp = client.post("/api/reviews", json=_review_payload(car, completed_booking, rating=5), headers=as_user(renter))
    assert resp.status_code == 201
    review = resp.json()["review"]
    assert review["rating"] == 5
    assert review["user"]["name"] == "Ravi Renter"
    assert review["created_at"] and review["updated_at"]

    stored_car = client.get(f"/api/cars/{car}").json()["car"]
    assert stored_car["rating"] == 3.5
    assert stored_car["total_reviews"] == 2


def test_second_review_for_same_car_rejected(client, renter, car, completed_booking, as_user, mongo):
    client.post("/api/reviews", json=_review_payload(car, completed_booking), headers=as_user(renter))
    resp = client.post("/api/reviews", json=_review_payload(car, completed_booking, rating=1), headers=as_user(renter))
    assert resp.status_code == 400
    assert resp.json() == {"error": "You have already reviewed this car"}
    assert mongo["review"].count_documents({"car_id": car, "user_id": renter}) == 1


def test_review_rating_bounds(client, renter, car, completed_booking, as_user, mongo):
    for rating in (0, 6):
        resp = client.post("/api/reviews", json=_review_payload(car, completed_booking, rating=rating), headers=as_user(renter))
        assert resp.status_code == 400
        assert "rating" in resp.json()["error"]
    assert mongo["review"].count_documents({}) == 0

    resp = client.post("/api/reviews", json=_review_payload(car, completed_booking, rating=1), headers=as_user(renter))
    assert resp.status_code == 201


def test_review_requires_completed_own_booking(client, renter, car, make_user, make_booking, completed_booking, as_user):
    pending = make_booking(status="pending")
    resp = client.post("/api/reviews", json=_review_payload(car, pending), headers=as_user(renter))
    assert resp.status_code == 400
    assert resp.json() == {"error": "You can only review completed bookings"}

    other = make_user(name="Olga", email="olga@carhire.io")
    resp = client.post("/api/reviews", json=_review_payload(car, completed_booking), headers=as_user(other))
    assert resp.status_code == 403

    resp = client.post("/api/reviews", json=_review_payload(car, "65a0000000000000000000ff"), headers=as_user(renter))
    assert resp.status_code == 404


def test_review_missing_fields(client, renter, car, completed_booking, as_user):
    resp = client.post("/api/reviews", json={"car_id": car, "booking_id": completed_booking, "rating": 4}, headers=as_user(renter))
    assert resp.status_code == 400
    assert resp.json() == {"error": "Please provide all required fields"}


def test_list_reviews(client, renter, car, completed_booking, as_user):
    assert client.get("/api/reviews").status_code == 400
    client.post("/api/reviews", json=_review_payload(car, completed_booking), headers=as_user(renter))
    reviews = client.get("/api/reviews", params={"car_id": car}).json()["reviews"]
    assert len(reviews) == 1
    assert reviews[0]["user"] == {"id": renter, "name": "Ravi Renter", "avatar": None}
