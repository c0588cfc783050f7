# transaction_logger.py
"""Transaction logger: records every wallet action with its status.

Entries are kept in memory for reporting and appended, one line each, to a
plain text sink::

    [<ISO timestamp>] [<module>] [<STATUS>] Wallet 0x1234...abcd performed <action> - TX: <hash> - Details: <details>
"""
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd

import config
from logger import SUCCESS, get_logger

logger = get_logger("TxLogger", config.LOG_LEVEL)


class LogStatus(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


_CONSOLE_LEVELS = {
    LogStatus.INFO: logging.INFO,
    LogStatus.SUCCESS: SUCCESS,
    LogStatus.WARNING: logging.WARNING,
    LogStatus.ERROR: logging.ERROR,
}

CSV_COLUMNS = ["Timestamp", "Wallet", "Module", "Action", "Status", "TxHash", "Details"]


def short_actor_id(actor_id: str) -> str:
    if len(actor_id) <= 10:
        return actor_id
    return f"{actor_id[:6]}...{actor_id[-4:]}"


@dataclass(frozen=True)
class LogEntry:
    timestamp: str
    actor_id: str
    actor_id_full: str
    module_name: str
    action_name: str
    status: LogStatus
    tx_ref: Optional[str] = None
    details: Optional[str] = None

    def format_line(self) -> str:
        line = (
            f"[{self.timestamp}] [{self.module_name}] [{self.status.value}] "
            f"Wallet {self.actor_id} performed {self.action_name}"
        )
        if self.tx_ref:
            line += f" - TX: {self.tx_ref}"
        if self.details:
            line += f" - Details: {self.details}"
        return line


@dataclass
class ModuleStats:
    total: int = 0
    success: int = 0
    error: int = 0

    @property
    def success_rate(self) -> str:
        if self.total == 0:
            return "N/A"
        return f"{self.success / self.total * 100:.2f}%"


@dataclass
class Summary:
    total_transactions: int
    wallets_used: int
    start_time: Optional[str]
    end_time: Optional[str]
    module_stats: Dict[str, ModuleStats] = field(default_factory=dict)


class TransactionLogger:
    """Records wallet actions to memory, console and an append-only text file.

    ``log_file=None`` keeps entries in memory and on the console only.
    """

    def __init__(self, log_file: Optional[str] = None, console: Optional[logging.Logger] = None):
        self.log_file = log_file
        self.console = console or logger
        self._history: List[LogEntry] = []
        self._lock = threading.Lock()

    def log_info(self, actor_id: str, module_name: str, action_name: str,
                 tx_ref: Optional[str] = None, details: Optional[str] = None) -> LogEntry:
        return self._record(actor_id, module_name, action_name, LogStatus.INFO, tx_ref, details)

    def log_success(self, actor_id: str, module_name: str, action_name: str,
                    tx_ref: Optional[str] = None, details: Optional[str] = None) -> LogEntry:
        return self._record(actor_id, module_name, action_name, LogStatus.SUCCESS, tx_ref, details)

    def log_warning(self, actor_id: str, module_name: str, action_name: str,
                    tx_ref: Optional[str] = None, details: Optional[str] = None) -> LogEntry:
        return self._record(actor_id, module_name, action_name, LogStatus.WARNING, tx_ref, details)

    def log_error(self, actor_id: str, module_name: str, action_name: str,
                  tx_ref: Optional[str] = None, details: Optional[str] = None) -> LogEntry:
        return self._record(actor_id, module_name, action_name, LogStatus.ERROR, tx_ref, details)

    def _record(self, actor_id: str, module_name: str, action_name: str, status: LogStatus,
                tx_ref: Optional[str], details: Optional[str]) -> LogEntry:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            actor_id=short_actor_id(actor_id),
            actor_id_full=actor_id,
            module_name=module_name,
            action_name=action_name,
            status=status,
            tx_ref=tx_ref,
            details=details,
        )
        message = f"[{module_name}] {action_name}"
        if details:
            message += f" - {details}"
        self.console.log(_CONSOLE_LEVELS[status], message)

        with self._lock:
            self._history.append(entry)
            if self.log_file:
                try:
                    with open(self.log_file, "a", encoding="utf-8") as f:
                        f.write(entry.format_line() + "\n")
                except OSError as e:
                    self.console.error(f"Failed to write to {self.log_file}: {e}")
        return entry

    @property
    def history(self) -> List[LogEntry]:
        with self._lock:
            return list(self._history)

    def wallet_history(self, address: str) -> List[LogEntry]:
        address_l = address.lower()
        return [e for e in self.history if e.actor_id_full.lower() == address_l]

    def module_history(self, module_name: str) -> List[LogEntry]:
        return [e for e in self.history if e.module_name == module_name]

    def summary(self) -> Summary:
        history = self.history
        module_stats: Dict[str, ModuleStats] = {}
        for entry in history:
            stats = module_stats.setdefault(entry.module_name, ModuleStats())
            stats.total += 1
            if entry.status is LogStatus.SUCCESS:
                stats.success += 1
            elif entry.status is LogStatus.ERROR:
                stats.error += 1

        return Summary(
            total_transactions=len(history),
            wallets_used=len({e.actor_id_full for e in history}),
            start_time=history[0].timestamp if history else None,
            end_time=history[-1].timestamp if history else None,
            module_stats=module_stats,
        )

    def to_dataframe(self) -> pd.DataFrame:
        rows: List[Dict[str, Any]] = [
            {
                "Timestamp": e.timestamp,
                "Wallet": e.actor_id_full,
                "Module": e.module_name,
                "Action": e.action_name,
                "Status": e.status.value,
                "TxHash": e.tx_ref or "",
                "Details": (e.details or "").replace(",", ";"),
            }
            for e in self.history
        ]
        return pd.DataFrame(rows, columns=CSV_COLUMNS)

    def export_csv(self, output_path: Optional[str] = None) -> Optional[str]:
        """Writes the history to CSV. Returns the path, or None if the write failed."""
        if output_path is None:
            stamp = datetime.now(timezone.utc).isoformat(timespec="seconds").replace(":", "-")
            output_path = os.path.join(os.getcwd(), f"transaction-history-{stamp}.csv")
        try:
            self.to_dataframe().to_csv(output_path, index=False)
        except OSError as e:
            self.console.error(f"Failed to write CSV {output_path}: {e}")
            return None
        return output_path
