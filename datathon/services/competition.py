"""Competition configuration stored as key/value rows.

Keys use the camelCase names administrators already know
(``problemType``, ``leaderboardMetric``, ...). Values are validated by
:class:`CompetitionConfig` before they are written.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from datathon.core.errors import ValidationError
from datathon.models import ConfigEntry
from datathon.scoring.metrics import DEFAULT_METRIC, metric_names

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_LIMIT = 15


class CompetitionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    problem_type: Literal["classification", "regression"] = Field("classification", alias="problemType")
    leaderboard_metric: Optional[str] = Field(None, alias="leaderboardMetric")
    default_upload_limit: int = Field(DEFAULT_UPLOAD_LIMIT, alias="defaultUploadLimit", ge=0)
    daily_upload_limit: Optional[int] = Field(None, alias="dailyUploadLimit", ge=0)
    competition_start_time: Optional[datetime] = Field(None, alias="competitionStartTime")
    competition_end_time: Optional[datetime] = Field(None, alias="competitionEndTime")
    enable_user_private_leaderboard: bool = Field(False, alias="enableUserPrivateLeaderboard")

    @field_validator("competition_start_time", "competition_end_time")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _metric_matches_problem_type(self):
        if self.leaderboard_metric is None:
            self.leaderboard_metric = DEFAULT_METRIC[self.problem_type]
        elif self.leaderboard_metric not in metric_names(self.problem_type):
            raise ValueError(
                f"leaderboardMetric {self.leaderboard_metric!r} is not a {self.problem_type} metric; "
                f"choose one of {', '.join(metric_names(self.problem_type))}"
            )
        return self

    def window_status(self, now: datetime) -> str:
        if self.competition_start_time and now < self.competition_start_time:
            return "not_started"
        if self.competition_end_time and now > self.competition_end_time:
            return "ended"
        return "active"

    def public_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


CONFIG_KEYS = tuple(field.alias for field in CompetitionConfig.model_fields.values())


class CompetitionConfigRepository:
    """Reads and writes :class:`CompetitionConfig` through SQL sessions."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _raw(self, db) -> dict:
        return {row.key: row.value for row in db.query(ConfigEntry).all() if row.value is not None}

    def load(self, db=None) -> CompetitionConfig:
        if db is not None:
            return self._build(self._raw(db))
        with self.session_factory() as session:
            return self._build(self._raw(session))

    @staticmethod
    def _build(raw: dict) -> CompetitionConfig:
        # Field errors name their key; the model-level error is an orphaned leaderboardMetric.
        for _ in range(3):
            try:
                return CompetitionConfig.model_validate(raw)
            except PydanticValidationError as exc:
                bad = {str(err["loc"][0]) if err["loc"] else "leaderboardMetric" for err in exc.errors()}
                raw = {k: v for k, v in raw.items() if k not in bad}
                logger.warning(f"Ignoring invalid stored config values: {', '.join(sorted(bad))}", extra={"stage": "config"})
        return CompetitionConfig()

    def update(self, key: str, value: Any) -> CompetitionConfig:
        if key not in CONFIG_KEYS:
            raise ValidationError(
                "invalid_config_key",
                f"Invalid config key. Allowed keys: {', '.join(CONFIG_KEYS)}",
            )
        with self.session_factory() as db:
            raw = self._raw(db)
            if value is None:
                raw.pop(key, None)
            else:
                raw[key] = value
            if key == "problemType" and "leaderboardMetric" in raw:
                # Keep the stored metric only if it still fits the new problem type.
                if raw["leaderboardMetric"] not in metric_names(raw.get("problemType", "classification")):
                    raw.pop("leaderboardMetric")
            try:
                config = CompetitionConfig.model_validate(raw)
            except PydanticValidationError as exc:
                raise ValidationError(
                    "invalid_config_value",
                    f"Invalid value for {key}",
                    detail=[err["msg"] for err in exc.errors()],
                ) from exc

            stored = config.model_dump(by_alias=True, mode="json")
            for k in CONFIG_KEYS:
                entry = db.get(ConfigEntry, k)
                new_value = stored.get(k) if k in raw else None
                if new_value is None:
                    if entry is not None:
                        db.delete(entry)
                elif entry is None:
                    db.add(ConfigEntry(key=k, value=new_value))
                else:
                    entry.value = new_value
            db.commit()
        logger.info(f"Competition config updated: {key}", extra={"stage": "config"})
        return config
