"""
Shared pytest fixtures: a file-backed SQLite database per test, a local
answer-key directory under ``tmp_path`` and no Redis.
"""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone

# Settings are read at import time; point them somewhere harmless first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["REDIS_URL"] = ""
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ.setdefault("ANSWER_KEY_DIR", tempfile.mkdtemp(prefix="datathon-keys-"))

import pytest  # noqa: E402

from datathon.core.storage import LocalAnswerKeyFiles  # noqa: E402
from datathon.db.session import build_engine, build_session_factory, init_db  # noqa: E402
from datathon.services.answer_keys import AnswerKeyStore  # noqa: E402
from datathon.services.competition import CompetitionConfigRepository  # noqa: E402
from datathon.services.leaderboard import LeaderboardService  # noqa: E402
from datathon.services.submissions import SubmissionService  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


def table_bytes(rows, header=("row_id", "label")) -> bytes:
    lines = [",".join(header)]
    lines.extend(",".join(str(v) for v in row) for row in rows)
    return ("\n".join(lines) + "\n").encode("utf-8")


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'datathon.db'}")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def config_repo(session_factory):
    return CompetitionConfigRepository(session_factory)


@pytest.fixture
def key_files(tmp_path):
    return LocalAnswerKeyFiles(str(tmp_path / "answer_keys"))


@pytest.fixture
def answer_keys(session_factory, key_files):
    return AnswerKeyStore(session_factory, key_files)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def submissions(session_factory, answer_keys, config_repo, clock):
    return SubmissionService(session_factory, answer_keys, config_repo, clock=clock)


@pytest.fixture
def leaderboard(session_factory, config_repo):
    return LeaderboardService(session_factory, config_repo)


@pytest.fixture
def classification_key(answer_keys):
    """Ten rows, 40% public: ids 1-4 public, 5-10 private."""
    rows = [(i, "cat" if i % 2 else "dog") for i in range(1, 11)]
    answer_keys.replace_from_upload(table_bytes(rows), "answers.csv", "row_id", "label", 40)
    return dict(rows)


@pytest.fixture
def regression_key(answer_keys, config_repo):
    config_repo.update("problemType", "regression")
    rows = [(i, float(i)) for i in range(1, 11)]
    answer_keys.replace_from_upload(table_bytes(rows), "answers.csv", "row_id", "label", 50)
    return dict(rows)


@pytest.fixture
def client(session_factory, answer_keys, config_repo, submissions, leaderboard):
    from fastapi.testclient import TestClient

    from datathon.api import deps
    from datathon.main import app

    app.dependency_overrides[deps.get_answer_key_store] = lambda: answer_keys
    app.dependency_overrides[deps.get_config_repo] = lambda: config_repo
    app.dependency_overrides[deps.get_submission_service] = lambda: submissions
    app.dependency_overrides[deps.get_leaderboard_service] = lambda: leaderboard
    yield TestClient(app)
    app.dependency_overrides.clear()
