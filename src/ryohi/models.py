from dataclasses import dataclass
from datetime import date
from typing import Literal, Optional

ApplicationStatus = Literal["pending", "approved", "rejected", "cancelled"]

APPLICATION_STATUSES: tuple[str, ...] = ("pending", "approved", "rejected", "cancelled")


@dataclass(frozen=True)
class TripApplicationDraft:
    purpose: str
    destination: str
    start_date: Optional[date]
    end_date: Optional[date]
    is_overseas: bool = False


@dataclass(frozen=True)
class TripApplication:
    user_id: str
    title: str
    description: Optional[str]
    destination: str
    start_date: date
    end_date: date
    purpose: str
    estimated_cost: int
    is_overseas: bool = False
    status: ApplicationStatus = "pending"


@dataclass(frozen=True)
class TripAttachment:
    application_id: int
    file_name: str
    file_size: int
    file_type: Optional[str]
    file_path: str
    file_url: Optional[str] = None


@dataclass(frozen=True)
class RegulationRecord:
    user_id: str
    regulation_name: str
    company_name: str
    company_address: str
    representative: str
    distance_threshold: int
    implementation_date: date
    revision_number: int
    is_transportation_real_expense: bool
    is_accommodation_real_expense: bool
    regulation_text: str
    regulation_type: str = "domestic"
    status: str = "active"
