"""
Guitar Harmony - HTTP API Tests

End-to-end tests through FastAPI's TestClient (lifespan included), covering:
- The auth gatekeeper, login and logout
- Songs CRUD, filters, search and play tracking
- File upload / download / delete
- Guitar catalog CRUD
- Error mapping (400 / 404 / 413 / 500)
"""

from pathlib import Path
from unittest.mock import AsyncMock

from guitar_harmony import config
from tests.conftest import MAX_TEST_UPLOAD, TEST_PASSWORD


# ===========================================================================
# Auth
# ===========================================================================


class TestGatekeeper:
    def test_api_requires_session(self, anon_client):
        response = anon_client.get("/api/songs")
        assert response.status_code == 401
        assert response.json() == {"detail": "Authentication required"}

    def test_other_paths_redirect_to_login(self, anon_client):
        response = anon_client.get("/", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/login"

    def test_login_page_is_public(self, anon_client):
        response = anon_client.get("/login")
        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]

    def test_health_is_public(self, anon_client):
        response = anon_client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["storage"] == "local"
        assert body["version"] == config.APP_VERSION

    def test_tampered_cookie_rejected(self, anon_client):
        anon_client.cookies.set(config.SESSION_COOKIE_NAME, '{"user":"owner","ts":1}|deadbeef')
        assert anon_client.get("/api/songs").status_code == 401


class TestLogin:
    def test_wrong_password(self, anon_client):
        response = anon_client.post("/api/auth/login", json={"password": "nope"})
        assert response.status_code == 401
        assert "set-cookie" not in response.headers

    def test_malformed_body(self, anon_client):
        assert anon_client.post("/api/auth/login", json={"pass": "x"}).status_code == 400
        response = anon_client.post(
            "/api/auth/login", content=b"not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_login_sets_cookie(self, anon_client):
        response = anon_client.post("/api/auth/login", json={"password": TEST_PASSWORD})
        assert response.status_code == 200
        assert response.json() == {"success": True}

        set_cookie = response.headers["set-cookie"].lower()
        assert set_cookie.startswith(f"{config.SESSION_COOKIE_NAME}=")
        assert "httponly" in set_cookie
        assert "max-age=2592000" in set_cookie
        assert "samesite=lax" in set_cookie

    def test_login_then_use_api(self, anon_client):
        anon_client.post("/api/auth/login", json={"password": TEST_PASSWORD})
        assert anon_client.get("/api/songs").status_code == 200

    def test_logout_clears_cookie(self, client):
        response = client.post("/api/auth/logout")
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert "max-age=0" in response.headers["set-cookie"].lower()

    def test_logout_page_redirects(self, client):
        response = client.get("/logout", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/login"

    def test_login_page_redirects_when_signed_in(self, client):
        response = client.get("/login", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/"

    def test_index(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "Guitar Harmony"


# ===========================================================================
# Songs
# ===========================================================================


class TestSongsApi:
    def test_create_defaults(self, client):
        response = client.post("/api/songs", json={})
        assert response.status_code == 201
        song = response.json()
        assert song["title"] == "Untitled"
        assert song["readiness"] == "Writing"
        assert song["play_count"] == 0

    def test_create_invalid_readiness(self, client):
        response = client.post("/api/songs", json={"title": "X", "readiness": "Done"})
        assert response.status_code == 400
        assert "readiness" in response.json()["detail"]

    def test_create_wrong_type(self, client):
        assert client.post("/api/songs", json={"guitar_id": "not-a-number"}).status_code == 400

    def test_get(self, client, make_song):
        song = make_song(title="Logic Jam", key="Em")
        response = client.get(f"/api/songs/{song['id']}")
        assert response.status_code == 200
        assert response.json()["key"] == "Em"

    def test_get_missing(self, client):
        response = client.get("/api/songs/999")
        assert response.status_code == 404
        assert response.json() == {"detail": "Song not found"}

    def test_get_non_integer_id(self, client):
        assert client.get("/api/songs/abc").status_code == 400

    def test_update_only_sent_fields(self, client, make_song):
        song = make_song(title="Old", lyrics="keep me", guitar_id=None)
        response = client.put(f"/api/songs/{song['id']}", json={"title": "New"})
        assert response.status_code == 200
        updated = response.json()
        assert updated["title"] == "New"
        assert updated["lyrics"] == "keep me"
        assert updated["updated_at"] > song["updated_at"]

    def test_update_empty_body_keeps_updated_at(self, client, make_song):
        song = make_song(title="Same")
        response = client.put(f"/api/songs/{song['id']}", json={})
        assert response.status_code == 200
        assert response.json()["updated_at"] == song["updated_at"]

    def test_update_link_and_unlink_guitar(self, client, make_song):
        guitar = client.get("/api/guitars", params={"search": "Telecaster"}).json()[0]
        song = make_song(title="Twang")

        linked = client.put(f"/api/songs/{song['id']}", json={"guitar_id": guitar["id"]}).json()
        assert linked["guitar_info"]["name"] == "Fender Telecaster"

        unlinked = client.put(f"/api/songs/{song['id']}", json={"guitar_id": None}).json()
        assert unlinked["guitar_id"] is None
        assert "guitar_info" not in unlinked

    def test_update_missing(self, client):
        assert client.put("/api/songs/999", json={"title": "Ghost"}).status_code == 404

    def test_update_invalid_readiness(self, client, make_song):
        song = make_song()
        response = client.put(f"/api/songs/{song['id']}", json={"readiness": "Finished"})
        assert response.status_code == 400

    def test_delete(self, client, make_song):
        song = make_song()
        response = client.delete(f"/api/songs/{song['id']}")
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert client.get(f"/api/songs/{song['id']}").status_code == 404

    def test_delete_missing_succeeds(self, client):
        assert client.delete("/api/songs/999").json() == {"success": True}

    def test_played(self, client, make_song):
        song = make_song()
        client.post(f"/api/songs/{song['id']}/played")
        response = client.post(f"/api/songs/{song['id']}/played")
        assert response.status_code == 200
        assert response.json()["play_count"] == 2
        assert response.json()["last_played_at"] is not None

    def test_played_invalid_id(self, client):
        assert client.post("/api/songs/abc/played").status_code == 400

    def test_played_missing(self, client):
        assert client.post("/api/songs/999/played").status_code == 404


class TestSongListApi:
    def test_list_all(self, client, make_song):
        make_song(title="A")
        make_song(title="B")
        titles = [s["title"] for s in client.get("/api/songs").json()]
        assert titles == ["B", "A"]

    def test_search(self, client, make_song):
        make_song(title="Logic Jam")
        make_song(title="Other")
        assert [s["title"] for s in client.get("/api/songs", params={"q": "LOGIC"}).json()] == [
            "Logic Jam"
        ]

    def test_readiness_filter(self, client, make_song):
        make_song(title="Gig", readiness="GigReady")
        make_song(title="Idea", readiness="Idea")
        songs = client.get("/api/songs", params={"readiness": "GigReady"}).json()
        assert [s["title"] for s in songs] == ["Gig"]

    def test_exclude_archived(self, client, make_song):
        make_song(title="Old", readiness="Archived")
        make_song(title="New")
        songs = client.get("/api/songs", params={"excludeArchived": "true"}).json()
        assert [s["title"] for s in songs] == ["New"]
        assert len(client.get("/api/songs", params={"excludeArchived": "false"}).json()) == 2

    def test_played_sorts(self, client, make_song):
        never = make_song(title="Never")
        played = make_song(title="Played")
        client.post(f"/api/songs/{played['id']}/played")
        recent = client.get("/api/songs", params={"sort": "played-recent"}).json()
        oldest = client.get("/api/songs", params={"sort": "played-oldest"}).json()
        assert [s["id"] for s in recent] == [played["id"], never["id"]]
        assert [s["id"] for s in oldest] == [played["id"], never["id"]]

    def test_bad_sort(self, client):
        assert client.get("/api/songs", params={"sort": "random"}).status_code == 400

    def test_bad_readiness(self, client):
        assert client.get("/api/songs", params={"readiness": "Nope"}).status_code == 400

    def test_internal_error_is_generic_500(self, client, monkeypatch):
        monkeypatch.setattr(
            client.app.state.songs, "list", AsyncMock(side_effect=RuntimeError("db gone"))
        )
        response = client.get("/api/songs")
        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}


# ===========================================================================
# Files
# ===========================================================================


class TestFilesApi:
    def _upload(self, client, song_id, name, data=b"data", content_type="application/octet-stream"):
        return client.post(
            f"/api/songs/{song_id}/files", files={"file": (name, data, content_type)}
        )

    def test_upload_zip(self, client, make_song):
        song = make_song()
        response = self._upload(client, song["id"], "demo.zip", b"PK\x03\x04", "application/zip")
        assert response.status_code == 201
        record = response.json()
        assert record["file_type"] == "logic"
        assert record["original_name"] == "demo.zip"
        assert record["url"] == f"/api/files/{record['id']}"

    def test_upload_mp3(self, client, make_song):
        song = make_song()
        response = self._upload(client, song["id"], "track.mp3", b"ID3", "audio/mpeg")
        assert response.status_code == 201
        assert response.json()["file_type"] == "audio"

    def test_upload_txt_rejected(self, client, make_song, uploads_dir):
        song = make_song()
        response = self._upload(client, song["id"], "demo.txt", b"hello", "text/plain")
        assert response.status_code == 400
        assert [p for p in uploads_dir.rglob("*") if p.is_file()] == []

    def test_upload_unknown_song(self, client):
        assert self._upload(client, 999, "track.mp3").status_code == 404

    def test_upload_too_large(self, client, make_song, uploads_dir):
        song = make_song()
        response = self._upload(client, song["id"], "big.wav", b"\0" * (MAX_TEST_UPLOAD + 1))
        assert response.status_code == 413
        assert client.get(f"/api/songs/{song['id']}/files").json() == []
        assert [p for p in uploads_dir.rglob("*") if p.is_file()] == []

    def test_upload_without_file(self, client, make_song):
        song = make_song()
        response = client.post(f"/api/songs/{song['id']}/files", data={"other": "x"})
        assert response.status_code == 400

    def test_list_files(self, client, make_song):
        song = make_song()
        self._upload(client, song["id"], "one.mp3")
        self._upload(client, song["id"], "two.wav")
        files = client.get(f"/api/songs/{song['id']}/files").json()
        assert [f["original_name"] for f in files] == ["two.wav", "one.mp3"]
        assert all(f["url"] == f"/api/files/{f['id']}" for f in files)

    def test_download(self, client, make_song):
        song = make_song()
        payload = b"RIFF" + b"\x01" * 100_000
        record = self._upload(client, song["id"], "Mix Down.wav", payload, "audio/wav").json()

        response = client.get(f"/api/files/{record['id']}")
        assert response.status_code == 200
        assert response.content == payload
        assert response.headers["content-type"] == "audio/wav"
        disposition = response.headers["content-disposition"]
        assert disposition.startswith("attachment;")
        assert 'filename="Mix Down.wav"' in disposition

    def test_download_missing(self, client):
        assert client.get("/api/files/999").status_code == 404

    def test_download_bytes_gone(self, client, make_song):
        song = make_song()
        record = self._upload(client, song["id"], "a.mp3").json()
        Path(record["file_path"]).unlink()
        assert client.get(f"/api/files/{record['id']}").status_code == 404

    def test_delete_file(self, client, make_song):
        song = make_song()
        record = self._upload(client, song["id"], "a.mp3").json()
        assert client.delete(f"/api/files/{record['id']}").json() == {"success": True}
        assert client.get(f"/api/songs/{song['id']}/files").json() == []
        assert not Path(record["file_path"]).exists()

    def test_delete_song_removes_files(self, client, make_song):
        song = make_song()
        record = self._upload(client, song["id"], "demo.zip").json()
        client.delete(f"/api/songs/{song['id']}")
        assert client.get(f"/api/songs/{song['id']}/files").json() == []
        assert client.get(f"/api/files/{record['id']}").status_code == 404
        assert not Path(record["file_path"]).exists()


# ===========================================================================
# Guitars
# ===========================================================================


class TestGuitarsApi:
    def test_seeded_catalog_sorted_by_name(self, client):
        guitars = client.get("/api/guitars").json()
        names = [g["name"] for g in guitars]
        assert len(guitars) == 14
        assert names == sorted(names, key=str.lower)

    def test_sort_by_type(self, client):
        types = [g["type"] for g in client.get("/api/guitars", params={"sort": "type"}).json()]
        assert types == sorted(types)

    def test_search(self, client):
        guitars = client.get("/api/guitars", params={"search": "bluegrass"}).json()
        assert [g["name"] for g in guitars] == ["Resonator Guitar"]

    def test_create(self, client):
        response = client.post(
            "/api/guitars", json={"name": "Gretsch White Falcon", "type": "Electric"}
        )
        assert response.status_code == 201
        guitar = response.json()
        assert guitar["name"] == "Gretsch White Falcon"
        assert client.get(f"/api/guitars/{guitar['id']}").json() == guitar

    def test_create_default_name(self, client):
        guitar = client.post("/api/guitars", json={}).json()
        assert guitar["name"] == "Untitled Guitar"
        assert guitar["type"] == "Other"

    def test_create_blank_name_and_type_fall_back(self, client):
        response = client.post("/api/guitars", json={"name": "  ", "type": ""})
        assert response.status_code == 201
        guitar = response.json()
        assert guitar["name"] == "Untitled Guitar"
        assert guitar["type"] == "Other"

    def test_create_invalid_type(self, client):
        assert client.post("/api/guitars", json={"name": "X", "type": "Lute"}).status_code == 400

    def test_get_missing(self, client):
        response = client.get("/api/guitars/999")
        assert response.status_code == 404
        assert response.json() == {"detail": "Guitar not found"}

    def test_update(self, client):
        guitar = client.post("/api/guitars", json={"name": "Strat", "type": "Electric"}).json()
        response = client.put(f"/api/guitars/{guitar['id']}", json={"notes": "new pickups"})
        assert response.status_code == 200
        assert response.json()["notes"] == "new pickups"
        assert response.json()["name"] == "Strat"

    def test_update_missing(self, client):
        assert client.put("/api/guitars/999", json={"notes": "x"}).status_code == 404

    def test_delete_keeps_song_reference(self, client, make_song):
        guitar = client.post("/api/guitars", json={"name": "Loaner", "type": "Bass"}).json()
        song = make_song(title="Borrowed", guitar_id=guitar["id"])
        assert song["guitar_info"]["name"] == "Loaner"

        assert client.delete(f"/api/guitars/{guitar['id']}").json() == {"success": True}
        after = client.get(f"/api/songs/{song['id']}").json()
        assert after["guitar_id"] == guitar["id"]
        assert "guitar_info" not in after
