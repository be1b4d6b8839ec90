"""CRM entities using Pydantic.

The remote CRM owns these records; the client only holds transient
copies. Unknown remote fields are preserved.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leadkit.crm.normalize import coerceContactValues, normalizeEmail, normalizePhone

# Recommended, not enforced
LIFECYCLE_STAGES = (
    "Lead",
    "New Lead",
    "Contacted",
    "Active Buyer",
    "Active Seller",
    "Nurture",
    "Cold Lead",
    "Under Contract",
    "Closed",
    "Past Client",
    "Trash",
)

PersonId = int | str


class ContactValue(BaseModel):
    """One email address or phone number."""

    model_config = ConfigDict(extra="allow")

    value: str
    type: str | None = None


class Person(BaseModel):
    """A person/lead record from the CRM."""

    model_config = ConfigDict(extra="allow")

    id: PersonId
    firstName: str | None = None
    lastName: str | None = None
    name: str | None = None
    emails: list[ContactValue] = Field(default_factory=list)
    phones: list[ContactValue] = Field(default_factory=list)
    stage: str | None = None
    source: str | None = None
    tags: list[str] = Field(default_factory=list)
    customFields: dict[str, Any] = Field(default_factory=dict)
    created: datetime | None = None
    updated: datetime | None = None

    @field_validator("emails", "phones", mode="before")
    @classmethod
    def _coerceContacts(cls, v: Any) -> Any:
        return coerceContactValues(v) or []

    @field_validator("tags", mode="before")
    @classmethod
    def _coerceTags(cls, v: Any) -> Any:
        return v or []

    @field_validator("customFields", mode="before")
    @classmethod
    def _coerceCustomFields(cls, v: Any) -> Any:
        return v or {}

    @property
    def displayName(self) -> str:
        """Best available human-readable name."""
        if self.name:
            return self.name
        joined = " ".join(p for p in (self.firstName, self.lastName) if p)
        return joined or str(self.id)

    @property
    def primaryEmail(self) -> str | None:
        """First email on record, normalized."""
        return normalizeEmail(self.emails[0].value) if self.emails else None

    @property
    def primaryPhone(self) -> str | None:
        """First phone on record, as normalized digits."""
        return normalizePhone(self.phones[0].value) if self.phones else None

    def identityKeys(self) -> list[str]:
        """Identifiers used for deduplication.

        Returns:
            Keys like "email:jane@example.com" and "phone:7025551234".
        """
        keys = [f"email:{e}" for e in (normalizeEmail(c.value) for c in self.emails) if e]
        keys += [f"phone:{p}" for p in (normalizePhone(c.value) for c in self.phones) if p]
        return keys


class PersonEvent(BaseModel):
    """An activity record attached to a person. Write-once."""

    model_config = ConfigDict(frozen=True)

    source: str
    type: str
    message: str
    personId: PersonId | None = None
    data: dict[str, Any] | None = None

    def toPayload(self) -> dict[str, Any]:
        """Request body for the events endpoint."""
        return self.model_dump(exclude_none=True)


class PeopleFilter(BaseModel):
    """Filter and pagination options for listing people."""

    model_config = ConfigDict(frozen=True)

    limit: int = Field(default=50, ge=1, le=100)
    offset: int | None = Field(default=None, ge=0)
    next: str | None = None
    orderBy: str | None = None
    createdAfter: str | None = None
    updatedAfter: str | None = None
    email: str | None = None
    phone: str | None = None
    stage: str | None = None
    source: str | None = None
    ids: tuple[PersonId, ...] | None = None

    def toParams(self) -> dict[str, str]:
        """Query parameters in a stable order."""
        params: dict[str, str] = {}
        for key, value in sorted(self.model_dump(exclude_none=True).items()):
            if key == "ids":
                params[key] = ",".join(str(i) for i in value)
            else:
                params[key] = str(value)
        return params

    def cacheKey(self) -> str:
        """Canonical form of the filter, used as a cache fingerprint."""
        return urlencode(self.toParams())

    def withCursor(self, cursor: str | None) -> "PeopleFilter":
        """Copy of this filter continuing from a pagination cursor."""
        return self.model_copy(update={"next": cursor, "offset": None if cursor else self.offset})


@dataclass
class PeoplePage:
    """One page of a people listing.

    Attributes:
        people: Records on this page.
        next: Cursor for the following page, None on the last page.
        total: Total matches reported by the remote, when known.
    """

    people: list[Person] = field(default_factory=list)
    next: str | None = None
    total: int | None = None
