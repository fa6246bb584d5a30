from conftest import auth_headers


def test_health(client, fake_redis):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["redis"] == "connected"
    assert body["database"] == "connected"


def test_me(client, seeded_users):
    alice, _, _ = seeded_users

    response = client.get("/me", headers=auth_headers(alice.id))

    assert response.status_code == 200
    assert response.json() == {
        "id": alice.id,
        "username": "alice",
        "email": "alice@example.com",
        "is_online": False,
        "blocked_user_ids": [],
    }

    assert client.get("/me", headers=auth_headers(9999)).status_code == 404
    assert client.get("/me").status_code == 401


def test_add_and_list_contacts(client, seeded_users):
    alice, bob, carol = seeded_users
    headers = auth_headers(alice.id)

    assert client.post("/contacts", json={"email": "bob@example.com"}, headers=headers).status_code == 201
    assert client.post("/contacts", json={"email": "carol@example.com"}, headers=headers).status_code == 201

    contacts = client.get("/contacts", headers=headers).json()
    assert [c["id"] for c in contacts] == [bob.id, carol.id]
    assert contacts[0]["username"] == "bob"
    assert contacts[0]["is_online"] is False
    assert contacts[0]["is_blocked"] is False

    assert client.get("/contacts", headers=auth_headers(bob.id)).json() == []


def test_add_contact_errors(client, seeded_users):
    alice, _, _ = seeded_users
    headers = auth_headers(alice.id)

    response = client.post("/contacts", json={"email": "nobody@example.com"}, headers=headers)
    assert response.status_code == 404

    response = client.post("/contacts", json={"email": "alice@example.com"}, headers=headers)
    assert response.status_code == 400

    client.post("/contacts", json={"email": "bob@example.com"}, headers=headers)
    response = client.post("/contacts", json={"email": "bob@example.com"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Contact already exists"


def test_delete_contact(client, seeded_users):
    alice, bob, _ = seeded_users
    headers = auth_headers(alice.id)
    client.post("/contacts", json={"email": "bob@example.com"}, headers=headers)

    assert client.delete(f"/contacts/{bob.id}", headers=headers).status_code == 200
    assert client.get("/contacts", headers=headers).json() == []


def test_block_and_unblock(client, seeded_users):
    alice, bob, _ = seeded_users
    headers = auth_headers(alice.id)
    client.post("/contacts", json={"email": "bob@example.com"}, headers=headers)

    assert client.post(f"/contacts/{bob.id}/block", headers=headers).status_code == 200
    assert client.post(f"/contacts/{bob.id}/block", headers=headers).status_code == 400

    assert client.get("/contacts", headers=headers).json()[0]["is_blocked"] is True
    assert client.get("/me", headers=headers).json()["blocked_user_ids"] == [bob.id]

    assert client.post(f"/contacts/{bob.id}/unblock", headers=headers).status_code == 200
    response = client.post(f"/contacts/{bob.id}/unblock", headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Contact is not blocked"

    assert client.get("/me", headers=headers).json()["blocked_user_ids"] == []


def test_block_errors(client, seeded_users):
    alice, _, _ = seeded_users
    headers = auth_headers(alice.id)

    assert client.post(f"/contacts/{alice.id}/block", headers=headers).status_code == 400
    assert client.post("/contacts/9999/block", headers=headers).status_code == 404
