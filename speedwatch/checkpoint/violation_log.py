"""CSV log of the violations detected by the checkpoint network."""
import os
from datetime import datetime
from typing import List

import pandas as pd

from speedwatch.events import VIOLATION_DETECTED
from speedwatch.utils.logger import Logger

COLUMNS = ['Time', 'License Plate', 'From Node', 'To Node', 'Detected Speed', 'Status']


class ViolationLog:
    """Appends a row to a CSV file for every violation_detected event.

    The header is written when the file does not exist yet. Write failures are
    logged and the row stays available in `rows`.
    """

    def __init__(self, event_bus, path: str):
        self.event_bus = event_bus
        self.path = path
        self.rows: List[dict] = []
        self.logger = Logger.get_logger('ViolationLog')

        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        if not os.path.exists(path):
            pd.DataFrame(columns=COLUMNS).to_csv(path, index=False)
        self.logger.info(f'Saving violation logs to: {path}')

        self._subscription = event_bus.subscribe(VIOLATION_DETECTED, self.handle_violation)

    def handle_violation(self, vehicle, from_id: int, to_id: int, speed: float, **_):
        row = {
            'Time': datetime.now().strftime('%H:%M:%S'),
            'License Plate': vehicle.plate,
            'From Node': from_id,
            'To Node': to_id,
            'Detected Speed': f'{speed:.1f} km/h',
            'Status': 'VIOLATION',
        }
        self.rows.append(row)
        try:
            pd.DataFrame([row], columns=COLUMNS).to_csv(self.path, mode='a', header=False, index=False)
        except OSError as e:
            self.logger.warning(f'Could not write to log file {self.path}: {e}')

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=COLUMNS)

    def close(self):
        if self._subscription is not None:
            self.event_bus.unsubscribe(self._subscription)
            self._subscription = None
