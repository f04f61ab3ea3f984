from datetime import date


def test_booking_form_requires_room_type(client, member):
    resp = client.get("/booking")
    assert resp.status_code == 400
    assert b"A room type is required" in resp.data


def test_booking_form_unknown_room_type(client, member):
    resp = client.get("/booking", query_string={"room_type": "Castle"})
    assert resp.status_code == 400


def test_booking_form_prefills_member_details(client, member, make_room):
    make_room("Deluxe", price=2000000)
    resp = client.get("/booking", query_string={"room_type": "Deluxe"})
    assert resp.status_code == 200
    assert b'value="Alice Smith"' in resp.data
    assert b'value="alice@example.com"' in resp.data
    assert b'value="Deluxe"' in resp.data
    assert b"Rp 2.000.000 / month" in resp.data
    assert date.today().isoformat().encode() in resp.data


def test_guest_cannot_book(client, make_room):
    make_room("Deluxe")
    client.get("/guest")
    resp = client.get("/booking", query_string={"room_type": "Deluxe"})
    assert resp.headers["Location"].endswith("/login")
    resp = client.post("/booking", data={"room_type": "Deluxe"})
    assert resp.headers["Location"].endswith("/login")


def test_booking_reserves_room_and_records_payment(client, member, make_room, query):
    make_room("Deluxe", price=2000000, available_count=2)
    resp = client.post(
        "/booking", data={"room_type": "Deluxe", "duration": "3", "move_in_date": "2026-11-01"}
    )
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/payments")

    (room,) = query("SELECT available_count FROM room_types WHERE room_type='Deluxe'")
    assert room["available_count"] == 1
    (payment,) = query("SELECT * FROM payments")
    assert payment["user_id"] == member
    assert payment["room_type"] == "Deluxe"
    assert payment["duration_months"] == 3
    assert payment["move_in_date"] == "2026-11-01"
    assert payment["amount"] == 6000000
    assert payment["paid_at"].endswith("+00:00")


def test_booking_defaults(client, member, make_room, query):
    make_room("Standard", price=1000, available_count=1)
    client.post("/booking", data={"room_type": "Standard"})
    (payment,) = query("SELECT duration_months, move_in_date, amount FROM payments")
    assert payment == {"duration_months": 1, "move_in_date": date.today().isoformat(), "amount": 1000}


def test_booking_sold_out(client, member, make_room, query):
    make_room("Suite", available_count=0)
    resp = client.post("/booking", data={"room_type": "Suite"})
    assert resp.status_code == 400
    assert b"no longer available" in resp.data
    assert query("SELECT * FROM payments") == []


def test_last_room_cannot_be_booked_twice(client, member, make_room, query):
    make_room("Deluxe", available_count=1)
    assert client.post("/booking", data={"room_type": "Deluxe"}).status_code == 302
    assert client.post("/booking", data={"room_type": "Deluxe"}).status_code == 400
    (room,) = query("SELECT available_count FROM room_types")
    assert room["available_count"] == 0
    assert len(query("SELECT * FROM payments")) == 1


def test_booking_unknown_room_type(client, member):
    resp = client.post("/booking", data={"room_type": "Castle"})
    assert resp.status_code == 400


def test_booking_rejects_bad_duration(client, member, make_room, query):
    make_room("Deluxe", available_count=5)
    for duration in ("0", "13", "abc"):
        resp = client.post("/booking", data={"room_type": "Deluxe", "duration": duration})
        assert resp.status_code == 400
    assert query("SELECT * FROM payments") == []
    (room,) = query("SELECT available_count FROM room_types")
    assert room["available_count"] == 5


def test_booking_rejects_bad_move_in_date(client, member, make_room):
    make_room("Deluxe")
    resp = client.post("/booking", data={"room_type": "Deluxe", "move_in_date": "01/11/2026"})
    assert resp.status_code == 400
    assert b"YYYY-MM-DD" in resp.data
