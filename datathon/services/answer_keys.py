"""Answer key store.

Two tiers: a durable tier (SQL metadata row plus the uploaded file in a
backing store) and an in-process cache holding an immutable
:class:`AnswerKey` snapshot. ``load()`` rebuilds the cache from the durable
tier at startup; ``reload()`` does the same on demand. Both recompute the
public/private boundary from the stored percentage and the same id order, so
the split is identical to the one produced at upload time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from datathon.core.errors import DataUnavailable, RecoverableStateError, ValidationError
from datathon.core.metrics import ANSWER_KEY_RELOADS_TOTAL, ANSWER_KEY_REPLACEMENTS_TOTAL
from datathon.models import AnswerKeyRecord
from datathon.scoring.aligner import CanonicalRow, natural_key
from datathon.scoring.table import Table, read_table

logger = logging.getLogger(__name__)

PUBLIC = "public"
PRIVATE = "private"
PARTITIONS = (PUBLIC, PRIVATE)


def clamp_percentage(value) -> int:
    try:
        pct = int(float(value))
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError("invalid_public_percentage", f"publicPercentage must be a number, got {value!r}") from exc
    return max(0, min(100, pct))


def public_row_count(total: int, public_percentage: int) -> int:
    """``ceil(total * pct / 100)`` without floating point error."""
    return -(-total * public_percentage // 100)


@dataclass(frozen=True)
class AnswerKey:
    id_column: str
    label_column: str
    public_percentage: int
    columns: tuple
    rows: tuple  # CanonicalRow, natural id order

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def public_rows(self) -> int:
        return public_row_count(len(self.rows), self.public_percentage)

    @property
    def private_rows(self) -> int:
        return len(self.rows) - self.public_rows

    def partition(self, which: str) -> tuple:
        if which == PUBLIC:
            return self.rows[: self.public_rows]
        if which == PRIVATE:
            return self.rows[self.public_rows:]
        raise ValueError(f"Unknown partition {which!r}")

    def summary(self) -> dict:
        return {
            "rowCount": self.total_rows,
            "publicCount": self.public_rows,
            "privateCount": self.private_rows,
            "publicPercentage": self.public_percentage,
            "columns": list(self.columns),
            "idColumn": self.id_column,
            "labelColumn": self.label_column,
        }

    @classmethod
    def from_table(cls, table: Table, id_column: str, label_column: str, public_percentage) -> "AnswerKey":
        for name in (id_column, label_column):
            if name not in table.columns:
                raise ValidationError(
                    "missing_columns",
                    f'Table does not contain "{name}" column',
                    detail={"found_columns": table.columns},
                )
        if len(table) == 0:
            raise ValidationError("empty_table", "Answer table has no rows")

        rows = []
        seen = set()
        duplicates = []
        for record in table.rows:
            row_id = record[id_column]
            if row_id in seen:
                duplicates.append(row_id)
            seen.add(row_id)
            extra = {k: v for k, v in record.items() if k not in (id_column, label_column)}
            rows.append(CanonicalRow(id=row_id, label=record[label_column], extra=extra))
        if duplicates:
            raise ValidationError(
                "duplicate_ids",
                f"Answer table contains {len(duplicates)} duplicate ids",
                detail={"sample": duplicates[:10]},
            )

        rows.sort(key=lambda r: natural_key(r.id))
        return cls(
            id_column=id_column,
            label_column=label_column,
            public_percentage=clamp_percentage(public_percentage),
            columns=tuple(table.columns),
            rows=tuple(rows),
        )


class AnswerKeyStore:
    def __init__(self, session_factory, files, delimiter: str = ","):
        self.session_factory = session_factory
        self.files = files
        self.delimiter = delimiter
        self._key: Optional[AnswerKey] = None
        self._write_lock = threading.Lock()

    # ---- in-process tier ----

    def current(self) -> Optional[AnswerKey]:
        return self._key

    def is_loaded(self) -> bool:
        return self._key is not None

    def replace(self, key: Optional[AnswerKey]) -> None:
        """Swap the active key. Readers hold either the old or the new snapshot."""
        with self._write_lock:
            self._key = key

    def get_partition(self, which: str) -> tuple:
        key = self._key
        if key is None:
            return ()
        return key.partition(which)

    # ---- durable tier ----

    def _record(self, db) -> Optional[AnswerKeyRecord]:
        return db.query(AnswerKeyRecord).order_by(AnswerKeyRecord.id.desc()).first()

    def has_record(self) -> bool:
        with self.session_factory() as db:
            return self._record(db) is not None

    def describe(self) -> Optional[dict]:
        with self.session_factory() as db:
            record = self._record(db)
            if record is None:
                return None
            data = record.to_dict()
        data["is_loaded"] = self.is_loaded()
        return data

    def column_config(self) -> dict:
        with self.session_factory() as db:
            record = self._record(db)
        if record is None:
            return {"idColumn": "row_id", "labelColumn": "label"}
        return {"idColumn": record.id_column, "labelColumn": record.label_column}

    def replace_from_upload(
        self,
        raw: bytes,
        filename: Optional[str],
        id_column: str,
        label_column: str,
        public_percentage=50,
        uploaded_by: Optional[str] = None,
    ) -> dict:
        """Validate an uploaded answer table, persist it and make it active."""
        if not id_column or not label_column:
            raise ValidationError("missing_columns", "ID column and label column names are required")
        table = read_table(raw, self.delimiter)
        key = AnswerKey.from_table(table, id_column.strip(), label_column.strip(), public_percentage)

        location = self.files.save(filename, raw)
        with self._write_lock:
            with self.session_factory() as db:
                previous = [r.location for r in db.query(AnswerKeyRecord).all()]
                db.query(AnswerKeyRecord).delete()
                db.add(
                    AnswerKeyRecord(
                        filename=filename,
                        location=location,
                        id_column=key.id_column,
                        label_column=key.label_column,
                        public_percentage=key.public_percentage,
                        delimiter=self.delimiter,
                        columns=list(key.columns),
                        total_rows=key.total_rows,
                        public_rows=key.public_rows,
                        private_rows=key.private_rows,
                        uploaded_by=uploaded_by,
                    )
                )
                db.commit()
            self._key = key

        for old in previous:
            if old != location:
                try:
                    self.files.delete(old)
                except OSError as e:
                    logger.warning(f"Failed to remove previous answer key file {old}: {str(e)}")

        ANSWER_KEY_REPLACEMENTS_TOTAL.inc()
        logger.info(
            f"Answer key replaced: {key.total_rows} rows ({key.public_rows} public / {key.private_rows} private)",
            extra={"stage": "answer_key"},
        )
        return key.summary()

    def reload(self) -> bool:
        """Rebuild the in-memory key from the stored record and backing file.

        Runs under the write lock so an upload committing meanwhile cannot be
        overwritten by the older table.
        """
        with self._write_lock:
            with self.session_factory() as db:
                record = self._record(db)
            if record is None:
                ANSWER_KEY_RELOADS_TOTAL.labels(outcome="missing_record").inc()
                return False

            raw = self.files.read(record.location)
            if raw is None:
                ANSWER_KEY_RELOADS_TOTAL.labels(outcome="missing_file").inc()
                logger.error(f"Answer key backing file not found: {record.location}", extra={"stage": "answer_key"})
                return False

            try:
                table = read_table(raw, record.delimiter or self.delimiter)
                key = AnswerKey.from_table(table, record.id_column, record.label_column, record.public_percentage)
            except ValidationError as e:
                ANSWER_KEY_RELOADS_TOTAL.labels(outcome="parse_error").inc()
                logger.error(f"Answer key backing file unusable: {e.message}", extra={"stage": "answer_key", "reason": e.reason})
                return False

            self._key = key
        ANSWER_KEY_RELOADS_TOTAL.labels(outcome="success").inc()
        logger.info(f"Answer key reloaded from {record.location}: {key.total_rows} rows", extra={"stage": "answer_key"})
        return True

    def load(self) -> bool:
        """Startup step: populate the cache from the durable tier if a key exists."""
        if self.is_loaded():
            return True
        return self.reload()

    def reload_if_needed(self) -> bool:
        return self.load()

    def require(self) -> AnswerKey:
        """Return the resident key or say why there is none."""
        key = self._key
        if key is not None:
            return key
        if not self.has_record():
            raise DataUnavailable(
                "no_answer_key",
                "No canonical answer table has been uploaded yet. Please contact admin.",
            )
        raise RecoverableStateError("answer_key_not_resident", "Answer key is recorded but not loaded")

    def ensure_loaded(self) -> AnswerKey:
        """Return the active key, attempting exactly one reload if it is not resident."""
        try:
            return self.require()
        except RecoverableStateError as exc:
            logger.warning("answer_key_not_resident_reloading", extra={"stage": "answer_key", "reason": exc.reason})
            if not self.reload():
                raise DataUnavailable(
                    "answer_key_unavailable",
                    "Answer data is not available. Please contact admin to re-upload the answer table.",
                ) from exc
        return self._key

    def clear(self) -> bool:
        with self._write_lock:
            with self.session_factory() as db:
                records = db.query(AnswerKeyRecord).all()
                locations = [r.location for r in records]
                for r in records:
                    db.delete(r)
                db.commit()
            self._key = None
        for location in locations:
            try:
                self.files.delete(location)
            except OSError as e:
                logger.warning(f"Failed to remove answer key file {location}: {str(e)}")
        return bool(locations)
