"""
directory.py - Read-only record stores consumed by the recipient resolver.

The resolver never talks to a database directly. It reads through four
narrow interfaces:

    UserDirectory              find_all(), find_by_email(email)
    ParticipantStore           find_all()
    VolunteerApplicationStore  find_all(), find_by_status(status)
    TeamApplicationStore       find_by_status(status)

The in-memory implementations below back local development and tests;
production deployments plug in their own persistence behind the same
methods.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from backend.app.messaging.models import (
    ApplicationStatus,
    ParticipantRecord,
    TeamApplicationRecord,
    UserRecord,
    VolunteerApplicationRecord,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Interfaces
# ═══════════════════════════════════════════════════════════════════════════

class UserDirectory(ABC):
    """Every registered user account."""

    @abstractmethod
    def find_all(self) -> List[UserRecord]:
        ...

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[UserRecord]:
        """Case-insensitive lookup. Missing → None."""
        ...


class ParticipantStore(ABC):
    """Event registrations, each carrying the registering parent."""

    @abstractmethod
    def find_all(self) -> List[ParticipantRecord]:
        ...


class VolunteerApplicationStore(ABC):
    """Volunteer-employee applications."""

    @abstractmethod
    def find_all(self) -> List[VolunteerApplicationRecord]:
        ...

    @abstractmethod
    def find_by_status(self, status: ApplicationStatus) -> List[VolunteerApplicationRecord]:
        ...


class TeamApplicationStore(ABC):
    """Requests to join a named internal team."""

    @abstractmethod
    def find_by_status(self, status: ApplicationStatus) -> List[TeamApplicationRecord]:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# In-memory implementations
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryUserDirectory(UserDirectory):

    def __init__(self, users: Optional[Iterable[UserRecord]] = None):
        self._users: List[UserRecord] = list(users or [])

    def add(self, user: UserRecord) -> UserRecord:
        self._users.append(user)
        return user

    def find_all(self) -> List[UserRecord]:
        return list(self._users)

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        if not email:
            return None
        wanted = email.strip().lower()
        for user in self._users:
            if user.email and user.email.strip().lower() == wanted:
                return user
        return None


class InMemoryParticipantStore(ParticipantStore):

    def __init__(self, participants: Optional[Iterable[ParticipantRecord]] = None):
        self._participants: List[ParticipantRecord] = list(participants or [])

    def add(self, participant: ParticipantRecord) -> ParticipantRecord:
        self._participants.append(participant)
        return participant

    def find_all(self) -> List[ParticipantRecord]:
        return list(self._participants)


class InMemoryVolunteerApplicationStore(VolunteerApplicationStore):

    def __init__(self, applications: Optional[Iterable[VolunteerApplicationRecord]] = None):
        self._applications: List[VolunteerApplicationRecord] = list(applications or [])

    def add(self, application: VolunteerApplicationRecord) -> VolunteerApplicationRecord:
        self._applications.append(application)
        return application

    def find_all(self) -> List[VolunteerApplicationRecord]:
        return list(self._applications)

    def find_by_status(self, status: ApplicationStatus) -> List[VolunteerApplicationRecord]:
        return [a for a in self._applications if a.status == status]


class InMemoryTeamApplicationStore(TeamApplicationStore):

    def __init__(self, applications: Optional[Iterable[TeamApplicationRecord]] = None):
        self._applications: List[TeamApplicationRecord] = list(applications or [])

    def add(self, application: TeamApplicationRecord) -> TeamApplicationRecord:
        self._applications.append(application)
        return application

    def find_by_status(self, status: ApplicationStatus) -> List[TeamApplicationRecord]:
        return [a for a in self._applications if a.status == status]
