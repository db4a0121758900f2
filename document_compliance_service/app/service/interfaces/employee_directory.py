from abc import ABC, abstractmethod
from typing import List, Optional

from document_compliance_service.app.models import EmployeeRecord


def canonicalize_email(email: Optional[str]) -> Optional[str]:
    """Trim and case-fold an address for matching. Returns None for blank input."""
    if email is None:
        return None
    canonical = email.strip().casefold()
    return canonical or None


class AbstractEmployeeDirectory(ABC):
    @abstractmethod
    async def list_approved_employees(self) -> List[EmployeeRecord]:
        """
        Returns every approved, non-administrative employee.

        Returns:
            EmployeeRecord entries, each with a display name suitable for denormalization.
        """
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[EmployeeRecord]:
        """
        Looks an employee up by email address.

        Args:
            email: The address as sent by the signing provider; implementations canonicalize it.

        Returns:
            The matching EmployeeRecord, or None if nobody matches.
        """
        pass
