from gemverse.config import SESSION_COOKIE

PASSWORD = "Sup3rSecret"


def _register(client, username, **extra):
    response = client.post(
        "/api/auth/register", json={"username": username, "password": PASSWORD, **extra}
    )
    assert response.status_code == 200, response.text
    return response.json()


def test_register_sets_cookie_and_serializes_big_numbers(client_factory):
    client = client_factory()
    body = _register(client, "founder")
    assert body["user"]["role"] == "OWNER"
    assert body["user"]["gems"] == "1000000"
    assert SESSION_COOKIE in client.cookies

    balance = client.get("/api/balance").json()
    assert balance == {"gems": "1000000", "crystals": "10000", "level": 100, "xp": "0"}

    session = client.get("/api/auth/session").json()
    assert session["user"]["username"] == "founder"


def test_requests_without_session_are_rejected(client_factory):
    response = client_factory().get("/api/balance")
    assert response.status_code == 401
    assert response.json() == {"error": "unauthenticated", "detail": "No session"}


def test_logout_ends_the_session(client_factory):
    client = client_factory()
    _register(client, "founder")
    token = client.cookies[SESSION_COOKIE]
    assert client.post("/api/auth/logout").status_code == 200

    stale = client_factory().get("/api/balance", headers={"Cookie": f"{SESSION_COOKIE}={token}"})
    assert stale.status_code == 401
    assert stale.json()["detail"] == "Invalid session"


def test_login_with_wrong_password(client_factory):
    client = client_factory()
    _register(client, "founder")
    response = client_factory().post(
        "/api/auth/login", json={"username": "founder", "password": "Wr0ngPassword"}
    )
    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"


def test_player_plays_plinko_and_lists_bets(client_factory):
    _register(client_factory(), "founder")
    player = client_factory()
    _register(player, "gambler")

    response = player.post(
        "/api/games/plinko/drop", json={"bet_amount": 100, "rows": 8, "risk": "low"}
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["game"] == "plinko"
    assert body["result"] in ("won", "lost")
    assert int(body["balance"]) == 900 + int(body["payout_amount"])

    bets = player.get("/api/bets").json()
    assert len(bets) == 1
    detail = player.get(f"/api/bets/{bets[0]['id']}").json()
    assert detail["outcome"]["server_seed"]


def test_mines_round_over_http(client_factory):
    _register(client_factory(), "founder")
    player = client_factory()
    _register(player, "gambler")

    bad = player.post("/api/games/mines/bet", json={"bet_amount": 10, "grid_size": 12})
    assert bad.status_code == 400
    assert bad.json()["error"] == "invalid_input"

    placed = player.post(
        "/api/games/mines/bet", json={"bet_amount": 10, "grid_size": 5, "mines_count": 24}
    ).json()
    assert placed["result"] == "active"
    assert "mines" not in placed["detail"]

    too_early = player.post("/api/games/mines/cashout", json={"bet_id": placed["bet_id"]})
    assert too_early.status_code == 400

    revealed = player.post(
        "/api/games/mines/reveal", json={"bet_id": placed["bet_id"], "cell": 0}
    ).json()
    assert revealed["result"] in ("won", "lost")
    again = player.post("/api/games/mines/reveal", json={"bet_id": placed["bet_id"], "cell": 1})
    assert again.status_code == 409
    assert again.json()["error"] == "already_settled"


def test_overdraft_is_rejected(client_factory):
    _register(client_factory(), "founder")
    player = client_factory()
    _register(player, "gambler")
    response = player.post("/api/games/crash/bet", json={"bet_amount": 5000})
    assert response.status_code == 400
    assert response.json() == {"error": "insufficient_balance", "detail": "Insufficient gems"}


def test_transfer_over_http(client_factory):
    _register(client_factory(), "founder")
    sender = client_factory()
    _register(sender, "sender")
    _register(client_factory(), "receiver")
    response = sender.post("/api/transfer", json={"to_username": "receiver", "amount": 200})
    assert response.json() == {"amount_sent": "190", "tax_collected": "10", "new_balance": "800"}


def test_admin_routes_are_role_gated(client_factory):
    owner = client_factory()
    _register(owner, "founder")
    player = client_factory()
    body = _register(player, "gambler")

    assert player.get("/api/admin/users").status_code == 403
    assert player.post("/api/owner/gem-rain").status_code == 403
    assert player.get("/owner").status_code == 403

    users = owner.get("/api/admin/users").json()
    assert {u["username"] for u in users} == {"founder", "gambler"}

    promoted = owner.post(f"/api/admin/user/{body['user']['id']}/role", json={"role": "ADMIN"})
    assert promoted.json()["role"] == "ADMIN"
    assert player.get("/api/admin/users").status_code == 200
    assert player.get("/api/admin/logs").status_code == 200
    assert player.get("/admin").status_code == 200


def test_banned_player_loses_access(client_factory):
    owner = client_factory()
    _register(owner, "founder")
    player = client_factory()
    body = _register(player, "gambler")

    response = owner.post(f"/api/admin/user/{body['user']['id']}/ban", json={"reason": "abuse"})
    assert response.json()["is_banned"] is True
    assert player.get("/api/balance").status_code == 401
    login = client_factory().post(
        "/api/auth/login", json={"username": "gambler", "password": PASSWORD}
    )
    assert login.status_code == 403


def test_gem_rain_cooldown_over_http(client_factory):
    owner = client_factory()
    _register(owner, "founder")
    first = owner.post("/api/owner/gem-rain")
    assert first.status_code == 200
    assert first.json()["recipients"] == 1
    second = owner.post("/api/owner/gem-rain")
    assert second.status_code == 429
    assert second.json()["error"] == "conflict"


def test_ownership_transfer_over_http(client_factory):
    owner = client_factory()
    _register(owner, "founder")
    heir = client_factory()
    body = _register(heir, "heir")

    response = owner.post("/api/owner/transfer-ownership", json={"new_owner_id": body["user"]["id"]})
    assert response.status_code == 200, response.text
    data = response.json()
    assert data["previous_owner"]["role"] == "ADMIN"
    assert data["new_owner"]["role"] == "OWNER"
    assert data["new_owner"]["gems"] == "1001000"

    assert owner.post("/api/owner/gem-rain").status_code == 403
    stats = heir.get("/api/owner/system-stats")
    assert stats.status_code == 200
    assert stats.json()["owner"]["username"] == "heir"
    assert heir.get("/owner").status_code == 200


def test_owner_settings_endpoints(client_factory):
    owner = client_factory()
    _register(owner, "founder")
    settings = owner.get("/api/owner/settings").json()
    assert settings["system_initialized"] == {"value": True}

    games = owner.get("/api/owner/game-settings").json()
    assert {g["game_id"] for g in games} == {"mines", "plinko", "crash"}

    update = owner.post(
        "/api/owner/game-settings",
        json={"settings": [{"game_id": "plinko", "min_bet": 10, "max_bet": 20}]},
    )
    assert update.status_code == 200
    too_small = owner.post(
        "/api/games/plinko/drop", json={"bet_amount": 5, "rows": 8, "risk": "low"}
    )
    assert too_small.status_code == 400

    patched = owner.patch("/api/owner/user/1", json={"xp": 42})
    assert patched.json()["xp"] == "42"


def test_broadcast_and_reports_over_http(client_factory):
    owner = client_factory()
    _register(owner, "founder")
    player = client_factory()
    reporter = _register(player, "gambler")["user"]
    troll = _register(client_factory(), "troll")["user"]

    assert player.post("/api/owner/broadcast", json={"message": "hi"}).status_code == 403
    sent = owner.post("/api/owner/broadcast", json={"message": "Maintenance tonight"})
    assert sent.status_code == 200
    assert sent.json()["message"] == "Maintenance tonight"
    assert owner.post("/api/owner/broadcast", json={"message": "x" * 501}).status_code == 400

    filed = player.post("/api/reports", json={"target_id": troll["id"], "reason": "rude"})
    assert filed.status_code == 200
    report_id = filed.json()["id"]
    assert player.get("/api/admin/reports").status_code == 403

    reports = owner.get("/api/admin/reports").json()
    assert reports[0]["reporter_username"] == reporter["username"]
    assert reports[0]["target_username"] == "troll"

    updated = owner.patch(f"/api/admin/report/{report_id}", json={"status": "DISMISSED"})
    assert updated.json()["status"] == "DISMISSED"
    assert owner.get("/api/admin/reports", params={"status": "PENDING"}).json() == []
    assert owner.get("/admin").status_code == 200


def test_error_shape_is_documented(client_factory):
    schema = client_factory().get("/openapi.json").json()
    assert "ErrorResponse" in schema["components"]["schemas"]
    responses = schema["paths"]["/api/balance"]["get"]["responses"]
    assert responses["401"]["content"]["application/json"]["schema"]["$ref"].endswith(
        "/ErrorResponse"
    )


def test_boolean_maintenance_setting_is_rejected(client_factory):
    owner = client_factory()
    _register(owner, "founder")
    response = owner.post("/api/owner/settings", json={"settings": {"maintenance_mode": True}})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"
    drop = owner.post("/api/games/plinko/drop", json={"bet_amount": 10, "rows": 8, "risk": "low"})
    assert drop.status_code == 200
