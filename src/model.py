"""
model.py

Domain models for the Renovation Subsidy Project Management System.

Entities
--------
- Project            (aggregate root)
- Intervention       (owned by Project)
- SubIntervention    (owned by Intervention)
- Stage              (owned by Intervention)
- Attachment         (owned by Stage)
- AuditEntry         (owned by Project, append-only)

Reference data (never owned by a Project)
-----------------------------------------
- Actor              – the acting principal recorded on audit entries
- MasterIntervention – catalog definition an Intervention is created from
- Contact            – owner / contractor / supervising engineer

All models use Python dataclasses for clean, framework-agnostic definitions.
A Project is always read and written as one whole aggregate; child entities
carry no back-references to their parents.
Timestamps are timezone-aware and stored in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ProjectStatus(str, Enum):
    """
    Lifecycle status of a project.

    QUOTATION  – Entry state; the project is still an offer.  Only left
                 through explicit activation.
    ON_TRACK   – Active, no overdue stages.
    DELAYED    – Active, at least one open stage is past its deadline.
    COMPLETED  – Every stage is completed.
    """
    QUOTATION = "Quotation"
    ON_TRACK = "On Track"
    DELAYED = "Delayed"
    COMPLETED = "Completed"


class StageStatus(str, Enum):
    """Execution status of an individual stage."""
    PENDING = "pending"
    IN_PROGRESS = "in progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StageAction(str, Enum):
    """
    Named stage status changes.

    ACTIVATE  – pending → in progress
    COMPLETE  – in progress → completed
    FAIL      – in progress → failed
    RESTART   – completed / failed → in progress
    """
    ACTIVATE = "activate"
    COMPLETE = "complete"
    FAIL = "fail"
    RESTART = "restart"


class MoveDirection(str, Enum):
    UP = "up"
    DOWN = "down"


class UserRole(str, Enum):
    ADMIN = "Admin"
    SUPPLIER = "Supplier"
    CLIENT = "Client"
    ACCOUNTING = "Accounting"


# Expense categories of the subsidy programme.  Some catalog entries carry a
# roman-numeral suffix, e.g. "Κουφώματα (I)".
EXPENSE_CATEGORIES = (
    "Αερισμός",
    "Εξοικονόμηση Ενέργειας",
    "Θερμομόνωση",
    "Κουφώματα",
    "Λοιπές Παρεμβάσεις",
    "Συστήματα Θέρμανσης-Ψύξης",
    "ΖΝΧ",
    "Σκίαση",
)

UNITS = ("€/m²", "€/kW", "€/μονάδα", "€/αίτηση")

CUSTOM_INTERVENTION_CODE = "CUSTOM"


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


@dataclass
class Actor:
    """The principal performing a mutation; copied verbatim into audit entries."""
    id: str = ""
    name: str = ""
    email: str = ""
    role: UserRole = UserRole.ADMIN


@dataclass
class Contact:
    """
    Read-only view of a person held by the contact directory.

    Projects and stages only store contact ids; they never own contacts.
    """
    id: str = ""
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    role: str = ""
    company: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class MasterIntervention:
    """
    A subsidy-programme catalog entry.

    `max_unit_price` and `max_amount` cap what the programme will pay for an
    intervention of this kind; they seed the Intervention's total cost.
    """
    id: str = ""
    code: str = ""
    expense_category: str = ""
    intervention_category: str = ""
    intervention_subcategory: Optional[str] = None
    unit: str = UNITS[0]
    max_unit_price: float = 0.0
    max_amount: float = 0.0
    info: Optional[str] = None
    energy_specs_options: Optional[str] = None


# ---------------------------------------------------------------------------
# Project aggregate
# ---------------------------------------------------------------------------


@dataclass
class Attachment:
    id: str = ""
    name: str = ""
    url: str = ""
    uploaded_at: Optional[datetime] = None


@dataclass
class Stage:
    """
    An execution milestone of an Intervention.

    `status` is written only by the stage state machine; `last_updated` is
    stamped on every mutation that touches the stage.
    """
    id: str = ""
    title: str = ""
    status: StageStatus = StageStatus.PENDING
    deadline: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    notes: Optional[str] = None
    assignee_contact_id: Optional[str] = None      # execution contractor
    supervisor_contact_id: Optional[str] = None    # engineer of record
    files: List[Attachment] = field(default_factory=list)


@dataclass
class SubIntervention:
    """
    A priced line item of an Intervention.

    `cost` is the programme-approved price (revenue, VAT-exclusive);
    `cost_of_materials` + `cost_of_labor` is what delivering it actually costs.
    """
    id: str = ""
    subcategory_code: str = ""
    description: str = ""
    cost: float = 0.0
    expense_category: Optional[str] = None
    quantity: Optional[float] = None
    quantity_unit: Optional[str] = None
    cost_of_materials: Optional[float] = None
    cost_of_labor: Optional[float] = None
    unit_cost: Optional[float] = None
    implemented_quantity: Optional[float] = None
    selected_energy_spec: Optional[str] = None

    # Computed by the metrics engine; cosmetic only
    display_code: Optional[str] = None


@dataclass
class Intervention:
    """
    One subsidised renovation measure within a Project.

    `master_id` is the stable key (unique per project).  Catalog fields are
    copied in when the intervention is added so later catalog edits never
    rewrite existing projects.
    """
    master_id: str = ""
    code: str = ""
    expense_category: str = ""
    intervention_category: str = ""
    intervention_subcategory: Optional[str] = None
    quantity: float = 0.0

    # Catalog caps copied at add time
    unit: Optional[str] = None
    max_unit_price: float = 0.0
    max_amount: float = 0.0
    info: Optional[str] = None
    energy_specs_options: Optional[str] = None
    selected_energy_spec: Optional[str] = None
    selected_system_class: Optional[str] = None

    # Manual quotation costs, used while there are no sub-interventions
    cost_of_materials: Optional[float] = None
    cost_of_labor: Optional[float] = None

    # Σ sub-intervention cost once any exist, otherwise the seeded cap
    total_cost: float = 0.0

    sub_interventions: List[SubIntervention] = field(default_factory=list)
    stages: List[Stage] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        for name in (self.intervention_subcategory, self.intervention_category):
            if isinstance(name, str) and name:
                return name
        return ""

    @property
    def is_custom(self) -> bool:
        return self.code == CUSTOM_INTERVENTION_CODE


@dataclass
class AuditEntry:
    """
    Immutable record of one change to a Project.

    Entries are prepended to Project.audit_log (newest first) and are never
    edited or removed.
    """
    id: str = ""
    user: Actor = field(default_factory=Actor)
    action: str = ""
    timestamp: Optional[datetime] = None
    details: str = ""


@dataclass
class Project:
    """
    Aggregate root for a renovation subsidy project.

    `budget`, `progress` and `alerts` are derived by the metrics engine and
    are never a source of truth.  `version` is owned by the storage layer
    and used for conditional (optimistic) writes.
    """
    id: str = ""
    title: str = ""
    owner_contact_id: str = ""
    application_number: Optional[str] = None
    deadline: Optional[datetime] = None
    status: ProjectStatus = ProjectStatus.QUOTATION
    interventions: List[Intervention] = field(default_factory=list)
    audit_log: List[AuditEntry] = field(default_factory=list)

    # Derived
    budget: float = 0.0
    progress: int = 0
    alerts: int = 0

    # Metadata
    version: int = 0
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Value objects returned by the financial rollup
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Profitability:
    internal_cost: float
    profit: float
    margin: float


@dataclass(frozen=True)
class FinancialSummary:
    """Summed programme budget vs. internal cost for an intervention or project."""
    program_budget: float
    internal_cost: float
    profit: float
    margin: float
