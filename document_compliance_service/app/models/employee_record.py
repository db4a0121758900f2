from typing import Optional

from pydantic import BaseModel


class EmployeeRecord(BaseModel): # Read-only view of the employee directory
    employee_id: str
    display_name: str
    email: Optional[str] = None
    role: str = "user"
    status: str = "approved"

    @property
    def is_eligible(self) -> bool:
        return self.status == "approved" and self.role != "admin"
