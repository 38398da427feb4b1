"""
State Store module for monitored domains, results and settings.

This module provides the storage collaborator used by the resolution
engine and the scheduler. Data is kept in memory and, when a file path is
configured, persisted as JSON protected by an HMAC so that tampering is
detected on load.

Writes are serialized by a lock, so concurrent extension checks for the
same domain never lose an update, and every read sees prior writes.
"""

import copy
import hashlib
import hmac
import json
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional, Protocol

from .config import DEFAULT_CHECK_INTERVAL_MINUTES, DEFAULT_EXTENSIONS
from .domain_validator import normalize_extension, normalize_name
from .exceptions import PersistenceError, TamperingError
from .models import Domain, HistoryEntry, LookupResult, utc_now_iso


class DomainStorage(Protocol):
    """Operations the engine and scheduler need from storage."""

    def get_domains(self) -> list[Domain]:
        ...

    def get_domain(self, name: str) -> Optional[Domain]:
        ...

    def update_domain_extension_status(
        self, name: str, extension: str, result: LookupResult
    ) -> bool:
        ...

    def exchange_extension_status(
        self, name: str, extension: str, result: LookupResult
    ) -> tuple[bool, Optional[LookupResult]]:
        ...

    def get_setting(self, key: str, default: Any = None) -> Any:
        ...

    def set_setting(self, key: str, value: Any) -> None:
        ...


class StateStore:
    """
    Storage with optional HMAC-protected JSON persistence.

    With ``file_path=None`` nothing touches the disk. With a path, the file
    is loaded on construction and rewritten after every change.
    """

    VERSION = 2
    MAX_HISTORY = 1000

    DEFAULT_SETTINGS: dict[str, Any] = {
        "checkInterval": DEFAULT_CHECK_INTERVAL_MINUTES,
        "extensions": list(DEFAULT_EXTENSIONS),
    }

    def __init__(
        self,
        file_path: Optional[Path] = None,
        hmac_secret: Optional[str] = None,
    ) -> None:
        """
        Initialize the state store.

        Args:
            file_path: Path to the state file (JSON), or None for memory only
            hmac_secret: Secret key for HMAC computation; without it the
                file is written and read unsigned

        Raises:
            TamperingError: If an existing file fails HMAC validation
            PersistenceError: If an existing file cannot be read or parsed
        """
        self._file_path = Path(file_path) if file_path is not None else None
        self._hmac_secret = hmac_secret.encode("utf-8") if hmac_secret else None
        self._lock = threading.RLock()
        self._domains: dict[str, Domain] = {}
        self._settings: dict[str, Any] = copy.deepcopy(self.DEFAULT_SETTINGS)
        self._history: list[HistoryEntry] = []
        self._last_updated: Optional[str] = None

        if self._file_path is not None:
            self.load()

    # Domains

    def get_domains(self) -> list[Domain]:
        """Return copies of all domains in insertion order."""
        with self._lock:
            return [self._copy(domain) for domain in self._domains.values()]

    def get_domain(self, name: str) -> Optional[Domain]:
        with self._lock:
            domain = self._domains.get(normalize_name(name))
            return self._copy(domain) if domain else None

    def add_domain(self, name: str, extensions: Optional[list[str]] = None) -> Domain:
        """
        Add a domain, or merge extensions into an existing one.

        Args:
            name: Base name; normalized before use
            extensions: Extensions to monitor, defaults to the ``extensions`` setting

        Returns:
            The stored domain
        """
        key = normalize_name(name)
        if not key:
            raise PersistenceError(code="invalid_name", message="Domain name is empty")

        requested = extensions if extensions is not None else self.get_setting("extensions")
        normalized = []
        for ext in requested or []:
            ext = normalize_extension(ext).lower()
            if ext and ext not in normalized:
                normalized.append(ext)

        with self._lock:
            domain = self._domains.get(key)
            if domain is None:
                domain = Domain(name=key, extensions=normalized)
                self._domains[key] = domain
                self._add_history("domain_added", {"domain": key, "extensions": normalized})
            else:
                added = [ext for ext in normalized if ext not in domain.extensions]
                domain.extensions.extend(added)
                if added:
                    self._add_history("extensions_added", {"domain": key, "extensions": added})
            self._persist()
            return self._copy(domain)

    def remove_domain(self, name: str) -> bool:
        key = normalize_name(name)
        with self._lock:
            if self._domains.pop(key, None) is None:
                return False
            self._add_history("domain_removed", {"domain": key})
            self._persist()
            return True

    def update_domain_extension_status(
        self, name: str, extension: str, result: LookupResult
    ) -> bool:
        """
        Store the latest result for one extension of a domain.

        Args:
            name: Base name of the domain
            extension: Extension the result belongs to
            result: The lookup result

        Returns:
            False if the domain is not (or no longer) monitored
        """
        stored, _ = self.exchange_extension_status(name, extension, result)
        return stored

    def exchange_extension_status(
        self, name: str, extension: str, result: LookupResult
    ) -> tuple[bool, Optional[LookupResult]]:
        """
        Store a result and return the one it replaced, under one lock.

        Returns:
            (stored, previous); previous is None when the extension had no
            result yet or the domain is not monitored
        """
        key = normalize_name(name)
        with self._lock:
            domain = self._domains.get(key)
            if domain is None:
                return False, None

            previous = domain.results.get(extension)
            if result.extension != extension:
                result = result.evolve(extension=extension)

            domain.results[extension] = result
            domain.last_checked = result.timestamp

            if previous is None or previous.available != result.available:
                self._add_history("status_change", {
                    "domain": key,
                    "extension": extension,
                    "from": None if previous is None else previous.available,
                    "to": result.available,
                    "via": result.via,
                })
            if result.error and (previous is None or previous.error != result.error):
                self._add_history("check_error", {
                    "domain": key,
                    "extension": extension,
                    "error": result.error,
                    "via": result.via,
                })

            self._persist()
            return True, previous

    # Settings

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._settings.get(key, default)
            return copy.deepcopy(value)

    def set_setting(self, key: str, value: Any) -> None:
        with self._lock:
            previous = self._settings.get(key)
            self._settings[key] = copy.deepcopy(value)
            if previous != value:
                self._add_history("setting_changed", {"key": key, "value": value})
            self._persist()

    def get_settings(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._settings)

    # History and statistics

    def get_history(self, limit: Optional[int] = None) -> list[HistoryEntry]:
        """Return history entries, oldest first; ``limit`` keeps the newest."""
        with self._lock:
            entries = list(self._history)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def get_stats(self) -> dict:
        """Aggregate counts over all monitored domain/extension pairs."""
        with self._lock:
            stats = {
                "domains": len(self._domains),
                "extensions": 0,
                "checked": 0,
                "available": 0,
                "taken": 0,
                "unknown": 0,
                "errors": 0,
                "last_checked": None,
            }
            for domain in self._domains.values():
                stats["extensions"] += len(domain.extensions)
                for ext in domain.extensions:
                    result = domain.results.get(ext)
                    if result is None:
                        stats["unknown"] += 1
                        continue
                    stats["checked"] += 1
                    if result.available is True:
                        stats["available"] += 1
                    elif result.available is False:
                        stats["taken"] += 1
                    else:
                        stats["unknown"] += 1
                    if result.error:
                        stats["errors"] += 1
                if domain.last_checked and (
                    stats["last_checked"] is None or domain.last_checked > stats["last_checked"]
                ):
                    stats["last_checked"] = domain.last_checked
            return stats

    # Persistence

    def load(self) -> bool:
        """
        Load state from file and validate HMAC.

        Returns:
            True if a file was loaded, False if it does not exist

        Raises:
            TamperingError: If HMAC validation fails
            PersistenceError: If the file cannot be read or parsed
        """
        if self._file_path is None or not self._file_path.exists():
            return False

        try:
            with open(self._file_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Failed to parse state file: {e}",
                details={"file_path": str(self._file_path)},
            )
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read state file: {e}",
                details={"file_path": str(self._file_path)},
            )

        if self._hmac_secret is not None:
            stored_hmac = raw_data.get("hmac", "")
            computed_hmac = self.compute_hmac(self._signable(raw_data))
            if not self.validate_hmac(stored_hmac, computed_hmac):
                raise TamperingError(
                    code="hmac_mismatch",
                    message="HMAC validation failed - data may have been tampered with",
                    details={"file_path": str(self._file_path)},
                )

        try:
            domains = {
                name: Domain.from_dict(data)
                for name, data in raw_data.get("domains", {}).items()
            }
            history = [
                HistoryEntry(
                    timestamp=entry["timestamp"],
                    action=entry["action"],
                    data=entry.get("data", {}),
                )
                for entry in raw_data.get("history", [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(
                code="parse_error",
                message=f"Malformed state file: {e}",
                details={"file_path": str(self._file_path)},
            )

        with self._lock:
            self._domains = domains
            self._settings = {**copy.deepcopy(self.DEFAULT_SETTINGS), **raw_data.get("settings", {})}
            self._history = history[-self.MAX_HISTORY:]
            self._last_updated = raw_data.get("last_updated")
        return True

    def save(self) -> None:
        """
        Save state to file with HMAC protection.

        Raises:
            PersistenceError: If the file cannot be written
        """
        with self._lock:
            self._persist()

    def _persist(self) -> None:
        if self._file_path is None:
            return

        now = utc_now_iso()
        data = {
            "version": self.VERSION,
            "domains": {name: d.to_dict() for name, d in self._domains.items()},
            "settings": self._settings,
            "history": [
                {"timestamp": e.timestamp, "action": e.action, "data": e.data}
                for e in self._history
            ],
            "last_updated": now,
        }
        if self._hmac_secret is not None:
            data["hmac"] = self.compute_hmac(data)

        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._file_path.with_suffix(self._file_path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True, ensure_ascii=False)
            tmp_path.replace(self._file_path)
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write state file: {e}",
                details={"file_path": str(self._file_path)},
            )
        self._last_updated = now

    def _signable(self, raw_data: dict) -> dict:
        return {key: value for key, value in raw_data.items() if key != "hmac"}

    def compute_hmac(self, data: dict) -> str:
        """
        Compute HMAC-SHA256 over serialized data.

        Args:
            data: Dictionary to compute HMAC over

        Returns:
            Hexadecimal HMAC string
        """
        if self._hmac_secret is None:
            raise PersistenceError(code="no_secret", message="No HMAC secret configured")
        serialized = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return hmac.new(
            self._hmac_secret,
            serialized.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def validate_hmac(self, stored_hmac: str, computed_hmac: str) -> bool:
        """Validate HMAC using constant-time comparison."""
        return hmac.compare_digest(stored_hmac, computed_hmac)

    def _add_history(self, action: str, data: dict) -> None:
        self._history.append(HistoryEntry(timestamp=utc_now_iso(), action=action, data=data))
        if len(self._history) > self.MAX_HISTORY:
            del self._history[: len(self._history) - self.MAX_HISTORY]

    def _copy(self, domain: Domain) -> Domain:
        return replace(
            domain,
            extensions=list(domain.extensions),
            results=dict(domain.results),
        )

    @property
    def file_path(self) -> Optional[Path]:
        """Get the state file path."""
        return self._file_path

    @property
    def last_updated(self) -> Optional[str]:
        return self._last_updated
