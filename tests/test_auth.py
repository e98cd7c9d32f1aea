def _login(client, email="tester@fbatrack.local", password="Secret!123"):
    return client.post("/api/auth/login", json={"email": email, "password": password})

def test_register_and_login(client, auth_headers):
    r = client.post("/api/auth/register", json={"email": "TESTER@fbatrack.local", "password": "x"})
    assert r.status_code == 409

    r = _login(client)
    assert r.status_code == 200
    body = r.get_json()
    assert body["user"]["email"] == "tester@fbatrack.local"
    assert body["user"]["name"] == "Tester"

    assert _login(client, password="wrong").status_code == 401
    assert client.post("/api/auth/register", json={"email": "x@y.z"}).status_code == 400

def test_whoami(client, auth_headers):
    r = client.get("/api/auth/whoami", headers=auth_headers)
    assert r.status_code == 200
    assert r.get_json()["email"] == "tester@fbatrack.local"

    r = client.get("/api/auth/whoami", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401

def test_refresh_rotates_and_logout_revokes(client, auth_headers):
    first = _login(client).get_json()["refresh_token"]

    r = client.post("/api/auth/refresh", json={"refresh_token": first})
    assert r.status_code == 200
    second = r.get_json()["refresh_token"]
    assert second != first

    # rotated token cannot be reused
    assert client.post("/api/auth/refresh", json={"refresh_token": first}).status_code == 401

    assert client.post("/api/auth/logout", json={"refresh_token": second}).status_code == 200
    assert client.post("/api/auth/refresh", json={"refresh_token": second}).status_code == 401
