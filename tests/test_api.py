import json

import pytest

PASSWORD = "TikTokEdu@2024!"


def load(data_dir, name):
    return json.loads((data_dir / name).read_text(encoding="utf-8"))


def login(client, password=PASSWORD):
    return client.post("/api/admin/login", json={"username": "admin", "password": password})


@pytest.fixture
def auth_headers(client):
    token = login(client).get_json()["token"]
    return {"Authorization": f"Bearer {token}"}


def test_list_courses_and_videos(client, data_dir):
    assert client.get("/api/courses").get_json() == load(data_dir, "courses.json")
    assert len(client.get("/api/videos").get_json()) == 13


def test_create_course(client, data_dir):
    resp = client.post("/api/courses", json={"tag": "calc", "name": "微积分"})
    assert resp.status_code == 200
    created = resp.get_json()
    assert isinstance(created["id"], int)
    assert load(data_dir, "courses.json")[-1] == created


def test_create_rejects_non_object_body(client):
    assert client.post("/api/videos", json=[1, 2]).status_code == 400


def test_update_preserves_id(client, data_dir):
    resp = client.put("/api/videos/201", json={"id": 5, "likes": 7})
    assert resp.status_code == 200
    assert resp.get_json()["id"] == 201
    stored = next(v for v in load(data_dir, "videos.json") if v["id"] == 201)
    assert stored["likes"] == 7


def test_update_missing_returns_404(client):
    assert client.put("/api/courses/777", json={"name": "x"}).status_code == 404


def test_delete_missing_returns_404_and_keeps_data(client, data_dir):
    before = load(data_dir, "courses.json")
    assert client.delete("/api/courses/-1").status_code == 404
    assert load(data_dir, "courses.json") == before


def test_delete_course(client, data_dir):
    resp = client.delete("/api/courses/3")
    assert resp.get_json()["tag"] == "linear"
    assert [c["id"] for c in load(data_dir, "courses.json")] == [1, 2]


def test_broken_file_yields_generic_error(client, data_dir):
    (data_dir / "videos.json").write_text("oops", encoding="utf-8")
    resp = client.get("/api/videos")
    assert resp.status_code == 500
    assert resp.get_json() == {"msg": "Failed to load videos"}
    assert client.post("/api/videos", json={"courseName": "1200"}).status_code == 500


def test_playlist_endpoint_interleaves_introduce_videos(client):
    items = client.get("/api/playlist/1200").get_json()["items"]
    assert len(items) == 12
    assert [i for i, item in enumerate(items) if item["course"]["tag"] == "introduce"] == [5, 11]


def test_playlist_unknown_course_is_empty(client):
    assert client.get("/api/playlist/nope").get_json()["items"] == []


def test_settings_round_trip(client):
    assert client.get("/api/settings").get_json() == {
        "introduceFrequency": 5, "enableIntroduce": True, "defaultCourse": "1200",
    }
    resp = client.put("/api/settings", json={"enableIntroduce": False})
    assert resp.get_json()["enableIntroduce"] is False
    assert len(client.get("/api/playlist/1200").get_json()["items"]) == 10


def test_settings_reject_non_positive_frequency(client):
    resp = client.put("/api/settings", json={"introduceFrequency": 0})
    assert resp.status_code == 400
    assert client.get("/api/settings").get_json()["introduceFrequency"] == 5


def test_login_success_and_session(client, auth_headers):
    resp = client.get("/api/admin/session", headers=auth_headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["user"]["username"] == "admin"
    assert body["needsRenewal"] is False


def test_login_failure_and_lockout_status_codes(client):
    for _ in range(5):
        assert login(client, "wrong").status_code == 401
    resp = login(client)
    assert resp.status_code == 423
    assert resp.get_json()["lockoutRemaining"] > 0


def test_login_with_non_string_password_is_rejected(client):
    resp = client.post("/api/admin/login", json={"username": "admin", "password": 12345678})
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "请输入用户名和密码"


def test_admin_endpoints_require_token(client):
    assert client.get("/api/admin/session").status_code == 401
    assert client.get("/api/admin/security_status",
                      headers={"Authorization": "Bearer not.a.token"}).status_code == 401


def test_refresh_and_logout(client):
    tokens = login(client).get_json()
    refreshed = client.post("/api/admin/refresh", json={"refreshToken": tokens["refreshToken"]})
    assert refreshed.status_code == 200
    headers = {"Authorization": f"Bearer {refreshed.get_json()['token']}"}

    assert client.post("/api/admin/logout", headers=headers,
                       json={"refreshToken": tokens["refreshToken"]}).status_code == 200
    assert client.get("/api/admin/session", headers=headers).status_code == 401
    assert client.post("/api/admin/refresh", json={"refreshToken": tokens["refreshToken"]}).status_code == 401


def test_change_password_endpoint(client, auth_headers):
    resp = client.post("/api/admin/password", headers=auth_headers,
                       json={"oldPassword": PASSWORD, "newPassword": "short"})
    assert resp.status_code == 400
    resp = client.post("/api/admin/password", headers=auth_headers,
                       json={"oldPassword": PASSWORD, "newPassword": "Changed#2024"})
    assert resp.status_code == 200
    assert login(client, "Changed#2024").status_code == 200


def test_change_password_endpoint_rejects_non_string_password(client, auth_headers):
    resp = client.post("/api/admin/password", headers=auth_headers,
                       json={"oldPassword": PASSWORD, "newPassword": 12345678})
    assert resp.status_code == 400
    assert login(client).status_code == 200


def test_audit_logs_listing_search_and_clear(client, auth_headers):
    listing = client.get("/api/admin/audit_logs", headers=auth_headers).get_json()
    assert listing["total"] >= 2
    assert listing["logs"][0]["event"] == "登录成功"

    found = client.get("/api/admin/audit_logs?q=登录成功", headers=auth_headers).get_json()
    assert found["total"] == 1

    assert client.delete("/api/admin/audit_logs", headers=auth_headers).status_code == 200
    after = client.get("/api/admin/audit_logs", headers=auth_headers).get_json()
    assert [row["event"] for row in after["logs"]] == ["审计日志已清除"]


def test_security_status_and_online_stats(client, auth_headers):
    status = client.get("/api/admin/security_status", headers=auth_headers).get_json()
    assert status["totalUsers"] == 1

    stats = client.get("/api/admin/online_stats", headers=auth_headers).get_json()
    assert stats["stats"]["currentOnline"] >= 5
    refreshed = client.post("/api/admin/online_stats", headers=auth_headers).get_json()
    assert "averageOnlineToday" in refreshed["stats"]


def test_two_factor_setup_endpoint(client, auth_headers):
    setup = client.post("/api/admin/2fa/setup", headers=auth_headers).get_json()
    assert setup["qrCodeUrl"].startswith("otpauth://totp/")
    assert client.post("/api/admin/2fa/enable", headers=auth_headers, json={"code": "abc"}).status_code == 400
