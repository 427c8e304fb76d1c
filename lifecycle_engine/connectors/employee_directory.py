"""
Employee Directory for the Lifecycle Engine.

The directory owns employee records. The engine only reads profiles and asks
the directory to move an employee between lifecycle statuses.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import yaml

from ..errors import NotFoundError
from ..models import EmployeeProfile, EmployeeStatus

logger = logging.getLogger(__name__)


class EmployeeDirectory(ABC):
    """Collaborator that owns employee records."""

    @abstractmethod
    def get_profile(self, employee_id: str) -> EmployeeProfile:
        """
        Get an employee profile.

        Raises:
            NotFoundError: If the employee is unknown
        """

    @abstractmethod
    def set_lifecycle_status(self, employee_id: str, status: EmployeeStatus):
        """Move an employee to a lifecycle status."""


class InMemoryEmployeeDirectory(EmployeeDirectory):
    """
    Employee directory held in memory.

    Optionally seeded from a YAML or JSON file holding a list of employee
    records (or a mapping with an ``employees`` key). Status changes are
    written back to that file.
    """

    def __init__(
        self,
        employees: Optional[Iterable[EmployeeProfile]] = None,
        directory_file: Optional[Union[str, Path]] = None,
    ):
        self.directory_file = Path(directory_file) if directory_file else None
        self.employees: Dict[str, EmployeeProfile] = {}
        self.status_changes: List[tuple] = []
        self._lock = threading.Lock()

        if self.directory_file:
            self._load()

        for profile in employees or []:
            self.employees[profile.employee_id] = profile

        logger.info(f"Initialized employee directory with {len(self.employees)} employees")

    def add_employee(self, profile: EmployeeProfile):
        """Insert or replace an employee record."""
        with self._lock:
            self.employees[profile.employee_id] = profile
            self._save()

    def get_profile(self, employee_id: str) -> EmployeeProfile:
        with self._lock:
            profile = self.employees.get(employee_id)
            if profile is None:
                raise NotFoundError("Employee", employee_id)
            return profile.model_copy(deep=True)

    def set_lifecycle_status(self, employee_id: str, status: EmployeeStatus):
        with self._lock:
            profile = self.employees.get(employee_id)
            if profile is None:
                raise NotFoundError("Employee", employee_id)

            previous = profile.status
            profile.status = status
            try:
                self._save()
            except OSError:
                profile.status = previous
                raise
            self.status_changes.append((employee_id, status))

        logger.info(f"Employee {employee_id} lifecycle status set to {status.value}")

    def list_employees(self) -> List[EmployeeProfile]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self.employees.values()]

    def _load(self):
        if not self.directory_file.exists():
            logger.warning(f"Employee directory file not found: {self.directory_file}")
            return

        with open(self.directory_file, encoding="utf-8") as f:
            if self.directory_file.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if isinstance(data, dict):
            data = data.get("employees", [])

        for record in data or []:
            profile = EmployeeProfile.model_validate(record)
            self.employees[profile.employee_id] = profile

        logger.info(f"Loaded {len(self.employees)} employees from {self.directory_file}")

    def _save(self):
        if not self.directory_file:
            return

        records = [p.model_dump(mode="json") for p in self.employees.values()]
        with open(self.directory_file, "w", encoding="utf-8") as f:
            if self.directory_file.suffix.lower() == ".json":
                json.dump({"employees": records}, f, indent=2)
            else:
                yaml.safe_dump({"employees": records}, f, sort_keys=False)
