import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis

from datathon.core.config import settings
from datathon.core.errors import ValidationError
from datathon.core.metrics import (
    LEADERBOARD_CACHE_TOTAL,
    LEADERBOARD_QUERIES_TOTAL,
    LEADERBOARD_QUERY_DURATION_SECONDS,
    DurationTimer,
)
from datathon.models import Submission, UserAccount
from datathon.scoring.metrics import TIEBREAK_METRIC, higher_is_better, metric_names

logger = logging.getLogger(__name__)

PUBLIC_VIEW = "public"
PRIVATE_VIEW = "private"
VIEWS = (PUBLIC_VIEW, PRIVATE_VIEW)


def _ts(dt: Optional[datetime]) -> float:
    # SQLite hands back naive datetimes; they were written as UTC.
    if dt is None:
        return float("inf")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _signed(value, metric: str) -> float:
    """Map a metric value so that smaller always sorts first."""
    if value is None:
        return float("inf")
    value = float(value)
    return -value if higher_is_better(metric) else value


def ranking_key(record: Submission, metrics: dict, metric: str, problem_type: str) -> tuple:
    """Primary metric, fixed secondary metric, earliest upload, attempt number, user id."""
    secondary = TIEBREAK_METRIC[problem_type]
    return (
        _signed(metrics.get(metric), metric),
        _signed(metrics.get(secondary), secondary),
        _ts(record.uploaded_at),
        record.attempt_number or 0,
        record.user_id,
    )


def view_metrics(record: Submission, view: str) -> dict:
    return dict((record.public_metrics if view == PUBLIC_VIEW else record.private_metrics) or {})


class LeaderboardCache:
    """Ranked leaderboard views cached in Redis as JSON.

    The cache is optional: with no ``REDIS_URL`` or an unreachable server
    every lookup is a miss and the leaderboard is computed from SQL.
    """

    prefix = "leaderboard:"

    def __init__(self, url: Optional[str] = None, ttl_seconds: int = 30):
        self.url = url
        self.ttl_seconds = ttl_seconds
        self.redis_client = None

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    def connect(self) -> bool:
        if not self.url:
            logger.info("Leaderboard cache disabled (REDIS_URL not set)")
            return False
        try:
            client = redis.from_url(
                self.url,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            client.ping()
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            self.redis_client = None
            return False
        self.redis_client = client
        logger.info("Connected to Redis leaderboard cache")
        return True

    def key(self, problem_type: str, view: str, metric: str) -> str:
        return f"{self.prefix}{problem_type}:{view}:{metric}"

    def get(self, key: str) -> Optional[list]:
        if not self.enabled:
            return None
        try:
            raw = self.redis_client.get(key)
        except redis.RedisError as e:
            LEADERBOARD_CACHE_TOTAL.labels(result="error").inc()
            logger.warning(f"Leaderboard cache read failed: {str(e)}")
            return None
        if raw is None:
            LEADERBOARD_CACHE_TOTAL.labels(result="miss").inc()
            return None
        LEADERBOARD_CACHE_TOTAL.labels(result="hit").inc()
        return json.loads(raw)

    def set(self, key: str, entries: list) -> None:
        if not self.enabled:
            return
        try:
            self.redis_client.set(key, json.dumps(entries), ex=self.ttl_seconds)
        except redis.RedisError as e:
            LEADERBOARD_CACHE_TOTAL.labels(result="error").inc()
            logger.warning(f"Leaderboard cache write failed: {str(e)}")

    def invalidate(self) -> None:
        if not self.enabled:
            return
        try:
            keys = list(self.redis_client.scan_iter(match=f"{self.prefix}*"))
            if keys:
                self.redis_client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Leaderboard cache invalidation failed: {str(e)}")

    def ping(self) -> str:
        if not self.url:
            return "disabled"
        try:
            client = self.redis_client or redis.from_url(self.url, socket_timeout=2)
            client.ping()
            return "ok"
        except redis.RedisError as e:
            return f"error: {e}"


class LeaderboardService:
    def __init__(self, session_factory, config_repo, cache: Optional[LeaderboardCache] = None):
        self.session_factory = session_factory
        self.config_repo = config_repo
        self.cache = cache

    def resolve_metric(self, metric: Optional[str], problem_type: str, default: str) -> str:
        if not metric:
            return default
        if metric not in metric_names(problem_type):
            raise ValidationError(
                "invalid_metric",
                f"{metric!r} is not a {problem_type} metric",
                detail={"allowed": list(metric_names(problem_type))},
            )
        return metric

    def ranked(self, view: str, problem_type: str, metric: str) -> list[dict]:
        """Every eligible user's best record, sorted and ranked. Not truncated."""
        with self.session_factory() as db:
            hidden = {
                uid for (uid,) in db.query(UserAccount.user_id).filter(UserAccount.hide_from_leaderboard.is_(True))
            }
            names = {
                uid: name
                for uid, name in db.query(UserAccount.user_id, UserAccount.display_name)
            }
            q = db.query(Submission).filter(Submission.problem_type == problem_type)
            if view == PRIVATE_VIEW:
                q = q.filter(Submission.is_selected_for_final.is_(True))
            records = [r for r in q.all() if r.user_id not in hidden]

        best: dict[str, tuple] = {}
        for record in records:
            metrics = view_metrics(record, view)
            key = ranking_key(record, metrics, metric, problem_type)
            current = best.get(record.user_id)
            if current is None or key < current[0]:
                best[record.user_id] = (key, record, metrics)

        ordered = sorted(best.values(), key=lambda item: item[0])
        entries = []
        for position, (_, record, metrics) in enumerate(ordered, start=1):
            entry = {
                "rank": position,
                "user_id": record.user_id,
                "display_name": names.get(record.user_id) or record.user_id,
                "submission_id": record.id,
                "attempt_number": record.attempt_number,
                "submitted_at": record.uploaded_at.isoformat() if record.uploaded_at else None,
                "score": metrics.get(metric),
                "public_score": (record.public_metrics or {}).get(metric),
                "metrics": metrics,
            }
            if view == PRIVATE_VIEW:
                entry["private_score"] = (record.private_metrics or {}).get(metric)
            entries.append(entry)
        return entries

    def get_leaderboard(
        self,
        view: str = PUBLIC_VIEW,
        limit: int = 50,
        user_id: Optional[str] = None,
        metric: Optional[str] = None,
    ) -> dict:
        if view not in VIEWS:
            raise ValidationError("invalid_view", f"view must be one of {', '.join(VIEWS)}")
        config = self.config_repo.load()
        problem_type = config.problem_type
        metric = self.resolve_metric(metric, problem_type, config.leaderboard_metric)

        with DurationTimer() as t:
            entries = None
            cache_key = None
            if self.cache is not None:
                cache_key = self.cache.key(problem_type, view, metric)
                entries = self.cache.get(cache_key)
            if entries is None:
                entries = self.ranked(view, problem_type, metric)
                if cache_key is not None:
                    self.cache.set(cache_key, entries)
        LEADERBOARD_QUERIES_TOTAL.labels(view=view).inc()
        LEADERBOARD_QUERY_DURATION_SECONDS.observe(t.seconds)

        user_rank = None
        if user_id:
            for entry in entries:
                if entry["user_id"] == user_id:
                    user_rank = {"rank": entry["rank"], "score": entry["score"], "total_users": len(entries)}
                    break

        logger.info(
            "leaderboard_query",
            extra={"view": view, "metric": metric, "problem_type": problem_type},
        )
        return {
            "entries": entries[: max(0, limit)],
            "user_rank": user_rank,
            "total_entries": len(entries),
            "problem_type": problem_type,
            "metric": metric,
            "view": view,
            "sort_order": "desc" if higher_is_better(metric) else "asc",
        }

    def invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate()


leaderboard_cache = LeaderboardCache(settings.REDIS_URL, settings.LEADERBOARD_CACHE_TTL_SECONDS)
