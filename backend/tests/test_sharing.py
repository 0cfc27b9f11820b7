def _note(client, headers, title="t", content="c"):
    r = client.post("/notes", headers=headers, json={"title": title, "content": content})
    assert r.status_code == 201
    return r.json()["id"]


def test_share_read_allows_read_denies_write(client, alice, bob):
    _, a_headers = alice
    b_id, b_headers = bob
    note_id = _note(client, a_headers)

    r = client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "bob@example.com", "permission": "read"})
    assert r.status_code == 201
    assert r.json()["user_id"] == b_id
    assert r.json()["permission"] == "read"

    # bob reads it and sees it in his shared list
    r = client.get(f"/notes/{note_id}", headers=b_headers)
    assert r.status_code == 200
    assert r.json()["permission"] == "read"
    shared = client.get("/notes", headers=b_headers).json()["shared"]
    assert [n["id"] for n in shared] == [note_id]

    # but cannot write (403, the note is visible to him)
    r = client.put(f"/notes/{note_id}", headers=b_headers, json={"content": "x"})
    assert r.status_code == 403
    assert client.get(f"/notes/{note_id}", headers=a_headers).json()["content"] == "c"


def test_share_write_allows_update(client, alice, bob):
    _, a_headers = alice
    b_id, b_headers = bob
    note_id = _note(client, a_headers)
    client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "bob@example.com", "permission": "write"})

    r = client.put(f"/notes/{note_id}", headers=b_headers, json={"content": "from bob"})
    assert r.status_code == 200
    assert r.json()["version"] == 2

    versions = client.get(f"/notes/{note_id}/versions", headers=a_headers).json()
    assert versions[0]["created_by"] == b_id

    # write does not include sharing
    r = client.post(f"/notes/{note_id}/share", headers=b_headers, json={"email": "alice@example.com", "permission": "read"})
    assert r.status_code == 403


def test_admin_can_share_and_revoke(client, alice, bob, carol):
    _, a_headers = alice
    _, b_headers = bob
    c_id, c_headers = carol
    note_id = _note(client, a_headers)
    client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "bob@example.com", "permission": "admin"})

    r = client.post(f"/notes/{note_id}/share", headers=b_headers, json={"email": "carol@example.com", "permission": "read"})
    assert r.status_code == 201
    assert client.get(f"/notes/{note_id}", headers=c_headers).status_code == 200

    r = client.delete(f"/notes/{note_id}/share/{c_id}", headers=b_headers)
    assert r.status_code == 204
    assert client.get(f"/notes/{note_id}", headers=c_headers).status_code == 404

    # second revoke has nothing to remove
    assert client.delete(f"/notes/{note_id}/share/{c_id}", headers=b_headers).status_code == 404


def test_admin_cannot_delete(client, alice, bob):
    _, a_headers = alice
    _, b_headers = bob
    note_id = _note(client, a_headers)
    client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "bob@example.com", "permission": "admin"})

    assert client.delete(f"/notes/{note_id}", headers=b_headers).status_code == 403
    assert client.delete(f"/notes/{note_id}/permanent", headers=b_headers).status_code == 403


def test_resharing_replaces_level(client, alice, bob):
    _, a_headers = alice
    _, b_headers = bob
    note_id = _note(client, a_headers)
    client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "bob@example.com", "permission": "write"})
    client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "bob@example.com", "permission": "read"})

    details = client.get(f"/notes/{note_id}", headers=a_headers).json()
    assert [(c["email"], c["permission"]) for c in details["collaborators"]] == [("bob@example.com", "read")]
    assert client.put(f"/notes/{note_id}", headers=b_headers, json={"content": "x"}).status_code == 403


def test_share_errors(client, alice):
    _, a_headers = alice
    note_id = _note(client, a_headers)

    r = client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "ghost@example.com", "permission": "read"})
    assert r.status_code == 404

    r = client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "alice@example.com", "permission": "read"})
    assert r.status_code == 400

    r = client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "bob@example.com", "permission": "owner"})
    assert r.status_code == 422


def test_archived_shared_note_leaves_shared_list(client, alice, bob):
    _, a_headers = alice
    _, b_headers = bob
    note_id = _note(client, a_headers)
    client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "bob@example.com", "permission": "read"})

    client.delete(f"/notes/{note_id}", headers=a_headers)
    assert client.get("/notes", headers=b_headers).json()["shared"] == []


def test_permanent_delete_drops_grants(client, alice, bob):
    _, a_headers = alice
    _, b_headers = bob
    note_id = _note(client, a_headers)
    client.post(f"/notes/{note_id}/share", headers=a_headers, json={"email": "bob@example.com", "permission": "write"})

    client.delete(f"/notes/{note_id}/permanent", headers=a_headers)
    assert client.get("/notes", headers=b_headers).json()["shared"] == []
    assert client.get(f"/notes/{note_id}", headers=b_headers).status_code == 404
