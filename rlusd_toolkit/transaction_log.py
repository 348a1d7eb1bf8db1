"""
Transaction Log
Bounded in-memory history of mutating operations plus one JSON file per UTC day
"""

import asyncio
import csv
import io
import json
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

DEFAULT_CAPACITY = 100
HISTORY_DAYS = 7

CSV_COLUMNS = ['Timestamp', 'Type', 'Success', 'From', 'To', 'Amount', 'Currency', 'Hash', 'Error']


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class TransactionLog:
    """Records are immutable dicts; ``entries`` is newest first"""

    def __init__(self, logs_dir, capacity: int = DEFAULT_CAPACITY):
        self.logs_dir = Path(logs_dir)
        self.capacity = capacity
        self._entries = deque(maxlen=capacity)
        self._file_lock = threading.Lock()

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return list(self._entries)

    def __len__(self):
        return len(self._entries)

    def day_file(self, day: str) -> Path:
        return self.logs_dir / f"{day}-transactions.json"

    def _remember(self, type, details, success, config) -> Dict[str, Any]:
        entry = {
            "id": uuid.uuid4().hex,
            "timestamp": _utc_timestamp(),
            "type": type,
            "success": success,
        }
        entry.update(details or {})
        if config is not None:
            entry["config"] = dict(config)

        self._entries.appendleft(entry)
        return entry

    def record(self, type: str, details: Optional[Dict[str, Any]] = None, success: bool = True,
               config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Append a record to memory, then best-effort to today's file

        ``config`` is stored under the record's ``config`` key. A file
        failure is logged and never raised.
        """
        entry = self._remember(type, details, success, config)
        self._append_to_file(entry)
        return entry

    async def record_async(self, type: str, details: Optional[Dict[str, Any]] = None, success: bool = True,
                           config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Same as ``record``; the file write runs in a worker thread"""
        entry = self._remember(type, details, success, config)
        await asyncio.to_thread(self._append_to_file, entry)
        return entry

    def _append_to_file(self, entry: Dict[str, Any]):
        with self._file_lock:
            self._write_entry(entry)

    def _write_entry(self, entry: Dict[str, Any]):
        path = self.day_file(entry["timestamp"][:10])
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            daily_logs = []
            if path.exists():
                try:
                    daily_logs = json.loads(path.read_text(encoding='utf-8'))
                except json.JSONDecodeError:
                    logger.warning(f"Log file {path} is not valid JSON, starting a new array")
                    daily_logs = []
            daily_logs.append(entry)
            path.write_text(json.dumps(daily_logs, indent=2, default=str), encoding='utf-8')
        except OSError as e:
            logger.error(f"Failed to write log file {path}: {e}")

    def query(self, type: Optional[str] = None, date: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        logs = self.entries
        if type:
            logs = [log for log in logs if log.get("type") == type]
        if date:
            logs = [log for log in logs if log.get("timestamp", "").startswith(date)]
        return logs[:max(limit, 0)]

    def export_csv(self, default_currency: str = '') -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')
        writer.writerow(CSV_COLUMNS)
        for log in self._entries:
            writer.writerow([
                log.get("timestamp", ''),
                log.get("type", ''),
                str(log.get("success", '')).lower(),
                log.get("from", ''),
                log.get("to", ''),
                log.get("amount", ''),
                log.get("currency") or default_currency,
                log.get("hash", ''),
                log.get("error", ''),
            ])
        return buffer.getvalue()

    def load_history(self, days: int = HISTORY_DAYS) -> int:
        """Load the most recent day files into memory; returns the number of records kept"""
        if not self.logs_dir.is_dir():
            return 0

        loaded = []
        files = sorted(self.logs_dir.glob('*-transactions.json'))
        for path in files[-days:]:
            try:
                records = json.loads(path.read_text(encoding='utf-8'))
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load {path.name}: {e}")
                continue
            loaded.extend(r for r in records if isinstance(r, dict))

        # records already in memory are also on disk
        unique = {r.get("id"): r for r in loaded}
        unique.update((r.get("id"), r) for r in self._entries)
        merged = sorted(unique.values(), key=lambda r: r.get("timestamp", ""), reverse=True)
        self._entries = deque(merged[:self.capacity], maxlen=self.capacity)

        logger.info(f"Loaded {len(self._entries)} historical logs")
        return len(self._entries)
