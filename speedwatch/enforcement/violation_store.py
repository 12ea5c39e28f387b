"""In-memory store of violations confirmed by the enforcement mirror."""
from dataclasses import asdict, dataclass
from typing import List, Optional

import pandas as pd


@dataclass
class ViolationRecord:
    plate: str
    speed: float
    legal_limit: float
    timestamp: float
    from_node: object
    to_node: object


class ViolationStore:
    """Append-only violation list with a pandas export."""

    COLUMNS = ['plate', 'speed', 'legal_limit', 'timestamp', 'from_node', 'to_node']

    def __init__(self):
        self._records: List[ViolationRecord] = []

    def __len__(self):
        return len(self._records)

    def add(self, record: ViolationRecord) -> ViolationRecord:
        self._records.append(record)
        return record

    def records(self, plate: Optional[str] = None) -> List[ViolationRecord]:
        if plate is None:
            return list(self._records)
        return [r for r in self._records if r.plate == plate]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(r) for r in self._records], columns=self.COLUMNS)

    def export_csv(self, path: str) -> str:
        self.to_frame().to_csv(path, index=False)
        return path

    def clear(self):
        self._records = []
