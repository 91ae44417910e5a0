"""Reading uploaded delimited tables.

Column names are data: nothing here knows which column holds ids or labels.
Headers and cell values are stripped of surrounding whitespace and every
cell is kept as a string.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field

import pandas as pd

from datathon.core.errors import ValidationError


@dataclass
class Table:
    columns: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def has_columns(self, *names: str) -> bool:
        return all(name in self.columns for name in names)

    def column(self, name: str) -> list[str]:
        return [row[name] for row in self.rows]


def read_table(raw: bytes, delimiter: str = ",") -> Table:
    """Parse ``raw`` bytes into a :class:`Table`.

    Raises
    ------
    ValidationError
        ``malformed_table`` when the bytes are not decodable or not a
        well-formed delimited table with a header row.
    """
    if not raw or not raw.strip():
        raise ValidationError("malformed_table", "Uploaded table is empty or has no header row")
    try:
        frame = pd.read_csv(
            io.BytesIO(raw),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            encoding="utf-8-sig",
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise ValidationError("malformed_table", "Table parsing error", detail=str(exc)) from exc

    columns = [str(c).strip() for c in frame.columns]
    frame.columns = columns
    frame = frame.fillna("")
    rows = [
        {col: str(value).strip() for col, value in zip(columns, record)}
        for record in frame.itertuples(index=False, name=None)
    ]
    return Table(columns=columns, rows=rows)
