import asyncio

from conftest import ADMIN_HEADERS, table_bytes


def upload_key(client, rows, public_percentage="40"):
    return client.post(
        "/api/admin/answer-key",
        headers=ADMIN_HEADERS,
        files={"file": ("answers.csv", table_bytes(rows), "text/csv")},
        data={"idColumn": "row_id", "labelColumn": "label", "publicPercentage": public_percentage},
    )


def submit(client, user_id, rows, comments=""):
    return client.post(
        "/api/submissions/upload",
        files={"file": ("preds.csv", table_bytes(rows), "text/csv")},
        data={"user_id": user_id, "comments": comments},
    )


KEY = [(i, "cat" if i % 2 else "dog") for i in range(1, 11)]


def with_wrong(*ids):
    return [(i, ("dog" if label == "cat" else "cat") if i in ids else label) for i, label in KEY]


def test_admin_routes_require_key(client):
    assert client.get("/api/admin/config").status_code == 403
    assert client.get("/api/admin/config", headers={"X-Admin-Key": "wrong"}).status_code == 403
    assert client.get("/api/admin/config", headers=ADMIN_HEADERS).status_code == 200


def test_answer_key_upload_and_describe(client):
    response = upload_key(client, KEY)
    assert response.status_code == 200
    body = response.json()
    assert (body["rowCount"], body["publicCount"], body["privateCount"]) == (10, 4, 6)

    info = client.get("/api/admin/answer-key", headers=ADMIN_HEADERS).json()
    assert info["total_rows"] == 10
    assert info["is_loaded"] is True


def test_answer_key_missing_columns(client):
    response = client.post(
        "/api/admin/answer-key",
        headers=ADMIN_HEADERS,
        files={"file": ("answers.csv", table_bytes(KEY), "text/csv")},
        data={"idColumn": "id", "labelColumn": "label"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "missing_columns"


def test_answer_key_delete(client):
    upload_key(client, KEY)
    assert client.delete("/api/admin/answer-key", headers=ADMIN_HEADERS).status_code == 200
    assert client.get("/api/admin/answer-key", headers=ADMIN_HEADERS).status_code == 404


def test_upload_without_answer_key(client):
    response = submit(client, "alice", with_wrong(1))
    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "no_answer_key"


def test_submission_flow(client):
    upload_key(client, KEY)
    response = submit(client, "alice", with_wrong(5), comments="baseline")
    assert response.status_code == 200
    submission = response.json()["submission"]
    assert submission["attempt_number"] == 1
    assert submission["comments"] == "baseline"
    assert submission["summary"]["rows_compared"] == 6
    assert "warning" not in response.json()
    sid = submission["id"]

    listed = client.get("/api/submissions", params={"user_id": "alice"}).json()["submissions"]
    assert [s["id"] for s in listed] == [sid]
    assert "preview" not in listed[0]

    detail = client.get(f"/api/submissions/{sid}", params={"user_id": "alice"})
    assert detail.status_code == 200
    assert detail.json()["submission"]["preview"]

    assert client.get(f"/api/submissions/{sid}", params={"user_id": "bob"}).status_code == 403
    assert client.get("/api/submissions/missing", params={"user_id": "alice"}).status_code == 404

    best = client.get("/api/submissions/best", params={"user_id": "alice"}).json()
    assert best["submission"]["id"] == sid

    r = client.put(f"/api/submissions/{sid}/comments", json={"user_id": "alice", "comments": "tuned"})
    assert r.json()["submission"]["comments"] == "tuned"

    r = client.put(f"/api/submissions/{sid}/select-final", json={"user_id": "alice", "isSelected": True})
    assert r.status_code == 200
    assert r.json()["submission"]["is_selected_for_final"] is True

    r = client.delete(f"/api/submissions/{sid}", params={"user_id": "alice"})
    assert r.status_code == 200
    status = client.get("/api/submissions/status", params={"user_id": "alice"}).json()
    assert status["submissionCount"] == 0
    assert status["attemptCount"] == 1
    assert status["remainingSubmissions"] == 14


def test_perfect_submission_carries_warning(client):
    upload_key(client, KEY)
    response = submit(client, "alice", KEY)
    assert response.status_code == 200
    assert "warning" in response.json()
    assert response.json()["submission"]["flagged_for_review"] is True


def test_rejections_map_to_status_codes(client):
    upload_key(client, KEY)
    constant = submit(client, "alice", [(i, "cat") for i, _ in KEY])
    assert constant.status_code == 403
    assert constant.json()["detail"]["reason"] == "constant_predictions"

    response = client.post(
        "/api/submissions/upload",
        files={"file": ("preds.csv", b"id,prediction\n1,cat\n2,dog\n", "text/csv")},
        data={"user_id": "alice"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["detail"] == {"found_columns": ["id", "prediction"]}


def test_config_update_and_account_ban(client):
    upload_key(client, KEY)
    r = client.put("/api/admin/config", headers=ADMIN_HEADERS, json={"key": "leaderboardMetric", "value": "f1"})
    assert r.status_code == 200
    assert r.json()["config"]["leaderboardMetric"] == "f1"

    bad = client.put("/api/admin/config", headers=ADMIN_HEADERS, json={"key": "leaderboardMetric", "value": "rmse"})
    assert bad.status_code == 400

    r = client.put("/api/admin/accounts/alice", headers=ADMIN_HEADERS, json={"is_banned": True, "ban_reason": "spam"})
    assert r.json()["account"]["is_banned"] is True
    response = submit(client, "alice", with_wrong(1))
    assert response.status_code == 403
    assert response.json()["detail"]["reason"] == "banned"


def test_leaderboard_public_and_private(client):
    upload_key(client, KEY)
    a = submit(client, "alice", with_wrong(5)).json()["submission"]["id"]
    submit(client, "bob", with_wrong(1, 5))

    board = client.get("/api/leaderboard", params={"user_id": "bob"}).json()
    assert board["view"] == "public"
    assert [e["user_id"] for e in board["entries"]] == ["alice", "bob"]
    assert board["user_rank"]["rank"] == 2

    assert client.get("/api/leaderboard", params={"view": "private"}).status_code == 403

    client.put(f"/api/submissions/{a}/select-final", json={"user_id": "alice", "isSelected": True})
    admin_view = client.get("/api/leaderboard", params={"view": "private"}, headers=ADMIN_HEADERS).json()
    assert [e["user_id"] for e in admin_view["entries"]] == ["alice"]

    client.put("/api/admin/config", headers=ADMIN_HEADERS, json={"key": "enableUserPrivateLeaderboard", "value": True})
    assert client.get("/api/leaderboard", params={"view": "private"}).status_code == 200


def test_leaderboard_rejects_foreign_metric(client):
    response = client.get("/api/leaderboard", params={"metric": "rmse"})
    assert response.status_code == 400
    assert response.json()["detail"]["reason"] == "invalid_metric"


def test_column_config_and_status(client):
    assert client.get("/api/submissions/column-config").json() == {"idColumn": "row_id", "labelColumn": "label"}
    status = client.get("/api/submissions/status", params={"user_id": "alice"}).json()
    assert status["status"] == "active"
    assert status["answerKeyLoaded"] is False


def test_health_and_metrics(client):
    health = client.get("/health").json()
    assert health["components"]["database"] == "ok"
    assert health["components"]["redis"] == "disabled"
    assert health["status"] == "healthy"

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "submissions_received_total" in metrics.text


def running_in_event_loop():
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def test_uploads_run_in_worker_threads(client, submissions, answer_keys, monkeypatch):
    in_loop = []

    def tracked(fn):
        def wrapper(*args, **kwargs):
            in_loop.append(running_in_event_loop())
            return fn(*args, **kwargs)
        return wrapper

    monkeypatch.setattr(answer_keys, "replace_from_upload", tracked(answer_keys.replace_from_upload))
    monkeypatch.setattr(submissions, "evaluate", tracked(submissions.evaluate))

    assert upload_key(client, KEY).status_code == 200
    assert submit(client, "alice", with_wrong(5)).status_code == 200
    assert in_loop == [False, False]
