"""Lead capture pipeline.

Drives a website lead through the CRM:

    received -> deduped -> upserted -> tagged* -> logged -> acknowledged

The upsert is the only hard failure. Tagging and event logging are
best-effort: each attempt is recorded as an Outcome and failures are
logged, never raised.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from leadkit.crm.client import CrmClient
from leadkit.crm.models import PersonId
from leadkit.crm.normalize import isValidEmail
from leadkit.exceptions import LeadkitError, ValidationError

logger = logging.getLogger("leadkit.crm")

DEFAULT_STAGE = "New Lead"
DEFAULT_SOURCE = "website/direct"
SITE_HOST = "heyberkshire.com"

SOURCE_TAGS = (
    ("facebook", "facebook-lead"),
    ("google", "google-lead"),
    ("zillow", "zillow-lead"),
    ("realtor", "realtor-lead"),
    ("instagram", "instagram-lead"),
)


class LeadSubmission(BaseModel):
    """A lead as submitted through a website form."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    firstName: str | None = None
    lastName: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    source: str | None = None
    stage: str | None = None
    tags: list[str] = Field(default_factory=list)
    message: str | None = None

    # Property search criteria
    propertyType: str | None = None
    priceMin: float | None = Field(default=None, ge=0)
    priceMax: float | None = Field(default=None, ge=0)
    bedrooms: int | None = Field(default=None, ge=0)
    bathrooms: float | None = Field(default=None, ge=0)
    neighborhoods: list[str] = Field(default_factory=list)

    timeline: str | None = None
    financing: str | None = None
    preApproved: bool | None = None

    customFields: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _checkRequired(self) -> "LeadSubmission":
        if not self.email and not self.phone:
            raise ValueError("Email or phone is required")
        if not (self.firstName or self.lastName or self.name):
            raise ValueError("Name is required")
        if self.email and not isValidEmail(self.email):
            raise ValueError("Invalid email address")
        return self

    @classmethod
    def parse(cls, data: Any) -> "LeadSubmission":
        """Validate raw form data.

        Raises:
            ValidationError: With the first problem found.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Lead payload must be a JSON object")
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            message = first["msg"].removeprefix("Value error, ")
            fieldName = ".".join(str(p) for p in first["loc"]) or None
            raise ValidationError(message, field=fieldName) from e

    @property
    def fullName(self) -> str:
        """Name as given, or first and last joined."""
        if self.name:
            return self.name
        return " ".join(p for p in (self.firstName, self.lastName) if p)


@dataclass(frozen=True)
class Outcome:
    """Result of one best-effort side effect.

    Attributes:
        op: Operation label, e.g. "addTag:website-lead".
        error: Error message, or None on success.
        personId: Person the operation targeted, when relevant.
    """

    op: str
    error: str | None = None
    personId: PersonId | None = None

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.error is None

    def toDict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"op": self.op, "error": self.error, "personId": self.personId}


@dataclass
class LeadCaptureResult:
    """Acknowledgement of a captured lead."""

    personId: PersonId
    isNew: bool
    stage: str
    outcomes: list[Outcome] = field(default_factory=list)

    @property
    def failures(self) -> list[Outcome]:
        """Best-effort operations that failed."""
        return [o for o in self.outcomes if not o.ok]

    @property
    def message(self) -> str:
        return "Lead created successfully" if self.isNew else "Lead updated successfully"


async def attempt(
    op: str,
    action: Callable[[], Awaitable[Any]],
    personId: PersonId | None = None,
) -> Outcome:
    """Run a best-effort CRM call and record its outcome.

    Only leadkit errors are absorbed; anything else propagates.
    """
    try:
        await action()
    except LeadkitError as e:
        logger.warning(f"{op} failed for person {personId}: {e}")
        return Outcome(op=op, error=str(e), personId=personId)
    return Outcome(op=op, personId=personId)


class LeadCapturePipeline:
    """Captures website leads into the CRM.

    Args:
        crm: CRM client.
        siteHost: Own hostname; referrers from it do not count as referrals.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        crm: CrmClient,
        siteHost: str = SITE_HOST,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._crm = crm
        self._siteHost = siteHost
        self._clock = clock

    async def run(
        self,
        submission: LeadSubmission,
        referer: str | None = None,
        query: Mapping[str, str] | None = None,
    ) -> LeadCaptureResult:
        """Capture one lead.

        Args:
            submission: Validated lead.
            referer: Referer header of the submitting page.
            query: Query parameters of the submission (UTM tags).

        Returns:
            The acknowledgement with every best-effort outcome.

        Raises:
            UpstreamError: If the dedup lookup or the upsert fails.
        """
        existing = await self._crm.findPerson(email=submission.email, phone=submission.phone)

        personData = self.buildPersonData(submission, referer, query)
        if existing is not None:
            personData["id"] = existing.id
        person = await self._crm.upsertPerson(personData, dedupe=False)
        logger.info(f"Lead {'updated' if existing else 'created'}: person {person.id}")

        outcomes: list[Outcome] = []
        for tag in collectTags(submission):
            outcomes.append(
                await attempt(
                    f"addTag:{tag}",
                    lambda tag=tag: self._crm.addTag(person.id, tag),
                    person.id,
                )
            )

        for event in self._buildEvents(submission, person.id, referer):
            outcomes.append(
                await attempt(
                    f"createEvent:{event['type']}",
                    lambda event=event: self._crm.createEvent(event),
                    person.id,
                )
            )

        result = LeadCaptureResult(
            personId=person.id,
            isNew=existing is None,
            stage=personData["stage"],
            outcomes=outcomes,
        )
        if result.failures:
            logger.warning(
                f"Lead {person.id} captured with {len(result.failures)} failed side effects"
            )
        return result

    def buildPersonData(
        self,
        submission: LeadSubmission,
        referer: str | None = None,
        query: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """CRM person payload for a submission."""
        customFields = {
            **submission.customFields,
            "propertyType": submission.propertyType,
            "priceMin": submission.priceMin,
            "priceMax": submission.priceMax,
            "bedrooms": submission.bedrooms,
            "bathrooms": submission.bathrooms,
            "neighborhoods": ", ".join(submission.neighborhoods) or None,
            "timeline": submission.timeline,
            "financing": submission.financing,
            "preApproved": submission.preApproved,
            "capturedAt": self._clock().isoformat(),
            "captureUrl": referer or "direct",
        }
        data: dict[str, Any] = {
            "name": submission.fullName,
            "source": enrichSource(submission.source, referer, query, self._siteHost),
            "stage": submission.stage or DEFAULT_STAGE,
            "customFields": {k: v for k, v in customFields.items() if v is not None},
        }
        if submission.email:
            data["emails"] = [{"value": submission.email}]
        if submission.phone:
            data["phones"] = [{"value": submission.phone}]
        return data

    def _buildEvents(
        self,
        submission: LeadSubmission,
        personId: PersonId,
        referer: str | None,
    ) -> list[dict[str, Any]]:
        events = []
        if submission.message:
            events.append(
                {
                    "source": "website",
                    "type": "Inbound Lead",
                    "message": f"Lead message: {submission.message}",
                    "personId": personId,
                    "data": {
                        "formType": submission.source or "contact-form",
                        "url": referer,
                    },
                }
            )

        criteria = buildSearchCriteria(submission)
        if criteria:
            events.append(
                {
                    "source": "website",
                    "type": "Property Search",
                    "message": f"Search criteria:\n{criteria}",
                    "personId": personId,
                    "data": {
                        "priceMin": submission.priceMin,
                        "priceMax": submission.priceMax,
                        "bedrooms": submission.bedrooms,
                        "bathrooms": submission.bathrooms,
                        "neighborhoods": submission.neighborhoods,
                    },
                }
            )
        return events


def enrichSource(
    source: str | None,
    referer: str | None = None,
    query: Mapping[str, str] | None = None,
    siteHost: str = SITE_HOST,
) -> str:
    """Derive the lead source.

    UTM parameters win, then an external referrer, then the submitted
    source, then "website/direct".
    """
    query = query or {}
    utmSource = query.get("utm_source")
    if utmSource:
        parts = [utmSource, query.get("utm_medium"), query.get("utm_campaign")]
        return "/".join(p for p in parts if p)

    if referer:
        hostname = urlparse(referer).hostname
        if hostname and siteHost not in hostname:
            return f"referral/{hostname}"

    return source or DEFAULT_SOURCE


def getSourceTag(source: str | None) -> str | None:
    """Tag for a well-known lead source, if any."""
    if not source:
        return None
    lowered = source.lower()
    for needle, tag in SOURCE_TAGS:
        if needle in lowered:
            return tag
    return None


def getPropertyTags(submission: LeadSubmission) -> list[str]:
    """Tags derived from property criteria."""
    tags = list(submission.neighborhoods)

    if submission.priceMax:
        if submission.priceMax > 1_000_000:
            tags.append("luxury")
        elif submission.priceMax < 300_000:
            tags.append("first-time-buyer")

    if submission.propertyType:
        tags.append(submission.propertyType.lower())

    if submission.preApproved:
        tags.append("pre-approved")

    if submission.timeline:
        timeline = submission.timeline.lower()
        if "immediately" in timeline or "asap" in timeline:
            tags.append("urgent")

    return tags


def collectTags(submission: LeadSubmission) -> list[str]:
    """Every tag to apply to a captured lead, deduplicated in order."""
    tags = [
        *submission.tags,
        "website-lead",
        getSourceTag(submission.source),
        *getPropertyTags(submission),
    ]
    return list(dict.fromkeys(t for t in tags if t))


def buildSearchCriteria(submission: LeadSubmission) -> str | None:
    """Human-readable summary of the property search, or None when empty."""
    criteria = []

    if submission.propertyType:
        criteria.append(f"Type: {submission.propertyType}")

    if submission.priceMin or submission.priceMax:
        low = f"${submission.priceMin:,.0f}" if submission.priceMin else "Any"
        high = f"${submission.priceMax:,.0f}" if submission.priceMax else "Any"
        criteria.append(f"Price: {low} - {high}")

    if submission.bedrooms:
        criteria.append(f"Bedrooms: {submission.bedrooms}+")

    if submission.bathrooms:
        criteria.append(f"Bathrooms: {submission.bathrooms:g}+")

    if submission.neighborhoods:
        criteria.append(f"Areas: {', '.join(submission.neighborhoods)}")

    if submission.timeline:
        criteria.append(f"Timeline: {submission.timeline}")

    if submission.financing:
        criteria.append(f"Financing: {submission.financing}")

    return "\n".join(criteria) if criteria else None
