import boarding


def test_list_room_types_search_is_case_insensitive(app, make_room):
    make_room("Standard", description="Shared kitchen")
    make_room("Deluxe", description="Balcony with a view")
    with app.app_context():
        names = [r["room_type"] for r in boarding.list_room_types("DELUXE")]
        assert names == ["Deluxe"]
        names = [r["room_type"] for r in boarding.list_room_types("kitchen")]
        assert names == ["Standard"]


def test_list_room_types_orders_and_flags_status(app, make_room):
    make_room("Suite", available_count=0)
    make_room("Deluxe", available_count=1)
    with app.app_context():
        rooms = boarding.list_room_types()
    assert [(r["room_type"], r["status"]) for r in rooms] == [("Deluxe", "Available"), ("Suite", "Sold Out")]


def test_search_wildcards_are_literal(app, make_room):
    make_room("Standard")
    with app.app_context():
        assert boarding.list_room_types("%") == []
        assert boarding.list_room_types("_") == []


def test_rooms_page_for_member(client, member, make_room):
    make_room("Standard", price=1500000, available_count=2)
    make_room("Suite", price=3000000, available_count=0)
    resp = client.get("/rooms")
    assert resp.status_code == 200
    assert b"Rp 1.500.000 / month" in resp.data
    assert b"/booking?room_type=Standard" in resp.data
    assert b"/booking?room_type=Suite" not in resp.data
    assert b"Sold Out</button>" in resp.data
    assert b"Log in to book" not in resp.data


def test_rooms_page_for_guest(client, make_room):
    make_room("Standard")
    client.get("/guest")
    resp = client.get("/rooms")
    assert resp.status_code == 200
    assert b"Log in to book" in resp.data
    assert b"Book now" not in resp.data


def test_rooms_search_without_results(client, member, make_room):
    make_room("Standard")
    resp = client.get("/rooms", query_string={"search": "penthouse"})
    assert b"No room types found." in resp.data
    assert b'value="penthouse"' in resp.data


def test_room_values_are_escaped(client, member, make_room):
    make_room("Standard", description="<script>alert(1)</script>")
    resp = client.get("/rooms")
    assert b"<script>alert(1)</script>" not in resp.data
    assert b"&lt;script&gt;" in resp.data


def test_available_rooms_hides_sold_out(client, member, make_room):
    make_room("Standard", available_count=1)
    make_room("Suite", available_count=0)
    resp = client.get("/rooms/available")
    assert b"Standard" in resp.data
    assert b"Suite" not in resp.data


def test_available_rooms_empty(client, member):
    resp = client.get("/rooms/available")
    assert b"Sorry, no rooms are available right now." in resp.data


def test_rooms_require_a_session(client):
    assert client.get("/rooms").status_code == 302
    assert client.get("/rooms/available").status_code == 302


def test_rupiah_filter():
    assert boarding.rupiah(1500000) == "1.500.000"
    assert boarding.rupiah(950) == "950"
    assert boarding.rupiah(None) == "0"


def test_search_folds_non_ascii_case(app, make_room):
    make_room("élite", description="Top floor")
    make_room("Standard", description="ÜBER quiet")
    with app.app_context():
        assert [r["room_type"] for r in boarding.list_room_types("ÉLITE")] == ["élite"]
        assert [r["room_type"] for r in boarding.list_room_types("über")] == ["Standard"]
