"""
infrastructure.py

In-memory implementation of the collaborator interfaces and the Unit of Work.

A self-contained backend that keeps every Project aggregate in a plain dict
keyed by id, next to the intervention catalog and the contact directory.
Suitable for local development, demos and tests without a real database.

Versioning
----------
Each stored Project carries a `version`.  `save(project, expected_version)`
compares against the stored version and bumps it under a per-project
asyncio.Lock, so two interleaved read-modify-write cycles on the same
project cannot both win: the loser gets ConcurrencyError and nothing of its
write lands.  Reads hand out deep copies so callers never alias stored
state.

To swap in a real database later, implement the same Abstract* interfaces
from application.py and override get_uow() in api.py:

    app.dependency_overrides[get_uow] = lambda: DocumentStoreUnitOfWork(client)
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from application import (
    AbstractCatalog,
    AbstractContactDirectory,
    AbstractProjectRepository,
    AbstractUnitOfWork,
    Clock,
    IdGenerator,
)
from errors import ConcurrencyError, NotFoundError, NotFoundKind, StorageError
from logger import get_logger
from model import Contact, MasterIntervention, Project

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Generic in-memory store
# ---------------------------------------------------------------------------

class _Store(dict):
    """A plain dict with typed get/save/delete helpers."""

    def fetch(self, key: str):
        return self.get(key)

    def put(self, obj) -> None:
        self[obj.id] = obj

    def remove(self, key: str) -> None:
        self.pop(key, None)

    def all(self) -> list:
        return list(self.values())


# ---------------------------------------------------------------------------
# Shared in-memory database (module-level singleton)
# Persists for the lifetime of the process; restarting uvicorn resets it.
# ---------------------------------------------------------------------------

class InMemoryDatabase:
    def __init__(self):
        self.projects: _Store = _Store()
        self.catalog:  _Store = _Store()
        self.contacts: _Store = _Store()
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, project_id: str) -> asyncio.Lock:
        return self._locks.setdefault(project_id, asyncio.Lock())

    def release_lock(self, project_id: str) -> None:
        """Forget the lock of a deleted project unless someone is waiting on it."""
        lock = self._locks.get(project_id)
        if lock is not None and not lock.locked():
            del self._locks[project_id]


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

def seed_reference_data(db: InMemoryDatabase) -> InMemoryDatabase:
    """Load a small subsidy catalog and contact list into an empty database."""
    for entry in (
        MasterIntervention(
            id="catalog-windows",
            code="1.A1",
            expense_category="Κουφώματα (I)",
            intervention_category="Αντικατάσταση Κουφωμάτων",
            intervention_subcategory="Πλαίσιο αλουμινίου με ενεργειακό υαλοπίνακα",
            unit="€/m²",
            max_unit_price=270.0,
            max_amount=5400.0,
            energy_specs_options="U < 2.0, U < 2.5",
        ),
        MasterIntervention(
            id="catalog-floor-insulation",
            code="2.B1",
            expense_category="Θερμομόνωση",
            intervention_category="Θερμομόνωση δαπέδου",
            intervention_subcategory="Τοποθέτηση μόνωσης σε επαφή με έδαφος",
            unit="€/m²",
            max_unit_price=35.0,
            max_amount=2000.0,
            energy_specs_options="R > 1,8, R > 2.0",
        ),
        MasterIntervention(
            id="catalog-heat-pump",
            code="3.A1",
            expense_category="Συστήματα Θέρμανσης-Ψύξης",
            intervention_category="Αντλία Θερμότητας",
            intervention_subcategory="Split αέρος-αέρος",
            unit="€/kW",
            max_unit_price=800.0,
            max_amount=6400.0,
            energy_specs_options="3,8 < P ≤ 8, P > 8",
        ),
        MasterIntervention(
            id="catalog-ventilation",
            code="4.A1",
            expense_category="Αερισμός",
            intervention_category="Σύστημα μηχανικού αερισμού με ανάκτηση θερμότητας",
            intervention_subcategory="Κεντρικό σύστημα > 600m³/h",
            unit="€/μονάδα",
            max_unit_price=3500.0,
            max_amount=7000.0,
        ),
        MasterIntervention(
            id="catalog-hot-water",
            code="5.A1",
            expense_category="ΖΝΧ",
            intervention_category="Ηλιακός θερμοσίφωνας",
            unit="€/μονάδα",
            max_unit_price=1200.0,
            max_amount=0.0,
        ),
    ):
        db.catalog.put(entry)

    for contact in (
        Contact(id="contact-1", first_name="Γιώργος", last_name="Τεχνικός",
                email="g.technikos@example.com", role="Τεχνίτης",
                company="Τεχνικές Λύσεις Α.Ε."),
        Contact(id="contact-2", first_name="Μαρία", last_name="Προμηθεύτρια",
                email="m.promitheutria@materials.com", role="Προμηθευτής",
                company="Alpha Κουφώματα"),
        Contact(id="contact-3", first_name="Νίκος", last_name="Λογιστής",
                email="nikos.logistis@accountants.gr", role="Λογιστήριο"),
        Contact(id="contact-4", first_name="Ιωάννης", last_name="Παπαδόπουλος",
                email="eleni.p@gmail.com", role="Πελάτης"),
        Contact(id="contact-5", first_name="Μαρία", last_name="Γεωργίου",
                email="maria.g@yahoo.com", role="Πελάτης"),
    ):
        db.contacts.put(contact)
    return db


# Module-level singleton, shared across all requests
_db = seed_reference_data(InMemoryDatabase())


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class InMemoryProjectRepository(AbstractProjectRepository):
    def __init__(self, db: InMemoryDatabase):
        self._db = db
        self._s = db.projects

    async def get(self, project_id):
        stored = self._s.fetch(project_id)
        return copy.deepcopy(stored) if stored is not None else None

    async def list_all(self):
        return [copy.deepcopy(p) for p in self._s.all()]

    async def add(self, project: Project) -> int:
        async with self._db.lock_for(project.id):
            if self._s.fetch(project.id) is not None:
                raise StorageError(f"Project '{project.id}' already exists.")
            snapshot = copy.deepcopy(project)
            snapshot.version = 1
            self._s.put(snapshot)
        return 1

    async def save(self, project: Project, expected_version: int) -> int:
        async with self._db.lock_for(project.id):
            stored = self._s.fetch(project.id)
            if stored is None:
                raise NotFoundError(NotFoundKind.PROJECT, project.id)
            if stored.version != expected_version:
                logger.debug(
                    "Rejected write to project %s: expected v%d, stored v%d",
                    project.id, expected_version, stored.version,
                )
                raise ConcurrencyError(project.id, expected_version, stored.version)
            snapshot = copy.deepcopy(project)
            snapshot.version = expected_version + 1
            self._s.put(snapshot)
            return snapshot.version

    async def delete(self, project_id):
        async with self._db.lock_for(project_id):
            self._s.remove(project_id)
        self._db.release_lock(project_id)


class InMemoryCatalog(AbstractCatalog):
    def __init__(self, store: _Store): self._s = store
    async def get(self, entry_id):    return copy.deepcopy(self._s.fetch(entry_id))
    async def list_all(self):         return [copy.deepcopy(m) for m in self._s.all()]


class InMemoryContactDirectory(AbstractContactDirectory):
    def __init__(self, store: _Store): self._s = store
    async def get(self, contact_id):  return copy.deepcopy(self._s.fetch(contact_id))
    async def list_all(self):         return [copy.deepcopy(c) for c in self._s.all()]


# ---------------------------------------------------------------------------
# Clocks and ids
# ---------------------------------------------------------------------------

class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Returns a fixed instant until told otherwise.  Used by tests and
    replays where "now" must be reproducible.
    """

    def __init__(self, fixed: Optional[datetime] = None):
        self._now = fixed or datetime(2024, 1, 1, tzinfo=timezone.utc)
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when

    def advance(self, **delta) -> None:
        self._now = self._now + timedelta(**delta)


class UuidIdGenerator(IdGenerator):
    def new_id(self, prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps the in-memory collaborators.  commit() and rollback() are no-ops:
    the only write is the repository's conditional save, which is atomic on
    its own.  A document-store implementation would do the same with a
    precondition on the stored version.
    """

    def __init__(
        self,
        db: InMemoryDatabase = _db,
        clock: Optional[Clock] = None,
        ids: Optional[IdGenerator] = None,
    ):
        self.projects = InMemoryProjectRepository(db)
        self.catalog  = InMemoryCatalog(db.catalog)
        self.contacts = InMemoryContactDirectory(db.contacts)
        self.clock    = clock or SystemClock()
        self.ids      = ids or UuidIdGenerator()

    async def commit(self)   -> None: pass   # no-op for in-memory
    async def rollback(self) -> None: pass
