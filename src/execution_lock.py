#!/usr/bin/env python
"""
File-based locks for invoice mutations.

Keeps two entry points (batch run, manual entry) from finalizing the same
invoice at the same time. Stale locks expire after ``timeout`` seconds.
"""

import json
import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from errors import LockedError


class ExecutionLock:
    """Exclusive lock stored as ``<lock_dir>/.<name>_lock.json``."""

    def __init__(self, lock_name: str, timeout: int = 3600, lock_dir: str = "."):
        """
        Args:
            lock_name: lock name, e.g. ``invoice_16``
            timeout: seconds after which an abandoned lock may be taken over
            lock_dir: directory holding the lock files
        """
        self.lock_name = lock_name
        self.timeout = timeout
        self.lock_file = os.path.join(lock_dir, f".{lock_name}_lock.json")

    def acquire_lock(self, process_id: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Take the lock; False when another live holder owns it."""
        existing_lock = self._load_lock()

        if existing_lock:
            try:
                lock_time = datetime.fromisoformat(existing_lock.get("timestamp", ""))
            except ValueError:
                lock_time = datetime.min
            if datetime.now() - lock_time < timedelta(seconds=self.timeout):
                return False
            print(f"⏰ Lock timed out, taking over: {existing_lock.get('process_id')}")
            self._remove_lock()

        lock_data = {
            "process_id": process_id,
            "timestamp": datetime.now().isoformat(),
            "timeout": self.timeout,
            "metadata": metadata or {},
        }
        return self._create_lock(lock_data)

    def release_lock(self, process_id: str) -> bool:
        existing_lock = self._load_lock()

        if not existing_lock:
            print(f"⚠️ No lock to release: {self.lock_name}")
            return False

        if existing_lock.get("process_id") != process_id:
            print(f"❌ Lock owned by another process: {existing_lock.get('process_id')}")
            return False

        self._remove_lock()
        return True

    def get_lock_info(self) -> Optional[Dict[str, Any]]:
        return self._load_lock()

    @contextmanager
    def hold(self, metadata: Optional[Dict[str, Any]] = None):
        process_id = f"{os.getpid()}-{uuid.uuid4().hex[:8]}"
        if not self.acquire_lock(process_id, metadata):
            info = self._load_lock() or {}
            raise LockedError(f"{self.lock_name} is locked by {info.get('process_id', 'another process')}")
        try:
            yield process_id
        finally:
            self.release_lock(process_id)

    def _load_lock(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.lock_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return None

    def _create_lock(self, lock_data: Dict[str, Any]) -> bool:
        os.makedirs(os.path.dirname(self.lock_file) or ".", exist_ok=True)
        try:
            # "x" fails if a concurrent caller created the file first
            with open(self.lock_file, "x", encoding="utf-8") as f:
                json.dump(lock_data, f, ensure_ascii=False, indent=2)
        except FileExistsError:
            return False
        return True

    def _remove_lock(self):
        try:
            os.remove(self.lock_file)
        except FileNotFoundError:
            pass
