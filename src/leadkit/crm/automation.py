"""Bulk CRM automation.

Every bulk operation is a reducer over a people walk: each item's
outcome is recorded and the scan continues past individual failures.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping

from leadkit.crm.client import CrmClient
from leadkit.crm.leadCapture import Outcome, attempt
from leadkit.crm.models import PeopleFilter, Person, PersonId
from leadkit.crm.normalize import normalizeEmail, normalizePhone
from leadkit.exceptions import LeadkitError

logger = logging.getLogger("leadkit.automation")

STALE_STAGE_MAP = {
    "New Lead": "Cold Lead",
    "Contacted": "Nurture",
    "Active Buyer": "Nurture",
    "Active Seller": "Nurture",
}

TEST_LEAD_PATTERNS = ("test", "demo", "example", "asdf", "qwerty")
TEST_LEAD_TAG = "test-lead"

FilterLike = PeopleFilter | Mapping[str, Any] | None


@dataclass
class BulkResult:
    """Summary of a bulk operation.

    Attributes:
        processed: Items handled successfully.
        failed: Items whose operation failed.
        outcomes: One outcome per attempted operation.
    """

    processed: int = 0
    failed: int = 0
    outcomes: list[Outcome] = field(default_factory=list)

    def add(self, outcome: Outcome) -> None:
        """Record one item's outcome."""
        self.outcomes.append(outcome)
        if outcome.ok:
            self.processed += 1
        else:
            self.failed += 1

    def toDict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "processed": self.processed,
            "failed": self.failed,
            "outcomes": [o.toDict() for o in self.outcomes],
        }


@dataclass
class DuplicateGroup:
    """People sharing one identifier.

    Attributes:
        key: "email" or "phone".
        value: Normalized identifier.
        people: People sharing it.
    """

    key: str
    value: str
    people: list[Person]

    @property
    def ids(self) -> list[PersonId]:
        return [p.id for p in self.people]


@dataclass
class SyncResult:
    """Summary of a lead sync from an external source."""

    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class AutomationFacade:
    """Bulk and iterative operations over the CRM.

    Args:
        crm: CRM client.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        crm: CrmClient,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._crm = crm
        self._clock = clock

    async def bulkAddTag(self, peopleFilter: FilterLike, tag: str) -> BulkResult:
        """Tag every person matching a filter."""
        result = BulkResult()
        async for person in self._crm.getAllPeople(peopleFilter):
            result.add(
                await attempt(
                    f"addTag:{tag}",
                    lambda person=person: self._crm.addTag(person.id, tag),
                    person.id,
                )
            )
        logger.info(f"Bulk tag '{tag}': {result.processed} tagged, {result.failed} failed")
        return result

    async def bulkUpdateStage(self, peopleFilter: FilterLike, stage: str) -> BulkResult:
        """Move every person matching a filter to a stage."""
        result = BulkResult()
        async for person in self._crm.getAllPeople(peopleFilter):
            result.add(
                await attempt(
                    f"updateStage:{stage}",
                    lambda person=person: self._crm.updateStage(person.id, stage),
                    person.id,
                )
            )
        logger.info(
            f"Bulk stage '{stage}': {result.processed} updated, {result.failed} failed"
        )
        return result

    async def progressStaleLeads(
        self,
        daysInactive: int = 30,
        now: datetime | None = None,
    ) -> BulkResult:
        """Demote leads that have not been updated recently.

        People whose stage appears in STALE_STAGE_MAP and whose last
        update is older than the cutoff are moved to the mapped stage,
        with a "Stage Change" event. People without an update time are
        skipped.

        Args:
            daysInactive: Days without updates before a lead is stale.
            now: Reference time (defaults to the clock).

        Returns:
            One outcome per person moved or failed.
        """
        cutoff = (now or self._clock()) - timedelta(days=daysInactive)
        result = BulkResult()

        async for person in self._crm.getAllPeople(PeopleFilter(limit=100)):
            newStage = STALE_STAGE_MAP.get(person.stage or "")
            if newStage is None or person.updated is None:
                continue
            if _asUtc(person.updated) >= cutoff:
                continue

            async def move(person: Person = person, newStage: str = newStage) -> None:
                await self._crm.updateStage(person.id, newStage)
                await self._crm.createEvent(
                    {
                        "source": "automation",
                        "type": "Stage Change",
                        "message": f"Auto-moved to {newStage} - {daysInactive} days inactive",
                        "personId": person.id,
                    }
                )

            result.add(await attempt(f"progressStage:{newStage}", move, person.id))

        logger.info(f"Stale lead progression: {result.processed} moved, {result.failed} failed")
        return result

    async def findDuplicates(self, peopleFilter: FilterLike = None) -> list[DuplicateGroup]:
        """Group people sharing an email or phone.

        Emails are grouped first. A phone group is reported only when
        none of its people already appear in an email group.
        """
        people = await self._crm.getAllPeople(peopleFilter or PeopleFilter(limit=100)).collect()
        return groupDuplicates(people)

    async def syncLeadsFromSource(self, leads: Iterable[Mapping[str, Any]]) -> SyncResult:
        """Import leads from an external source (e.g. a listing portal).

        Each lead is deduplicated, upserted, tagged with its source and
        optionally given an inbound event. Failures are counted and the
        sync continues.
        """
        result = SyncResult()
        for lead in leads:
            name = lead.get("name") or ""
            source = lead.get("source") or "import"
            try:
                existing = None
                if lead.get("email") or lead.get("phone"):
                    existing = await self._crm.findPerson(
                        email=lead.get("email"), phone=lead.get("phone")
                    )

                data: dict[str, Any] = {
                    "name": name,
                    "source": source,
                    "emails": lead.get("email"),
                    "phones": lead.get("phone"),
                    "customFields": {**lead, "syncedAt": self._clock().isoformat()},
                }
                if existing is not None:
                    data["id"] = existing.id
                person = await self._crm.upsertPerson(data, dedupe=False)

                await self._crm.addTag(person.id, source)
                if lead.get("message"):
                    await self._crm.createEvent(
                        {
                            "source": source,
                            "type": "Inbound Lead",
                            "message": lead["message"],
                            "personId": person.id,
                        }
                    )
            except LeadkitError as e:
                result.failed += 1
                result.errors.append(f"Failed to sync {name}: {e}")
                logger.warning(f"Lead sync failed for {name}: {e}")
                continue

            if existing is not None:
                result.updated += 1
            else:
                result.created += 1

        logger.info(
            f"Lead sync: {result.created} created, {result.updated} updated, "
            f"{result.failed} failed"
        )
        return result

    async def generateSourceReport(self, daysBack: int = 30) -> dict[str, dict[str, float]]:
        """Lead counts and shares by source for recently created people."""
        since = self._clock() - timedelta(days=daysBack)
        walk = self._crm.getAllPeople(PeopleFilter(createdAfter=since.isoformat(), limit=100))
        counts = Counter([person.source or "Unknown" async for person in walk])

        total = sum(counts.values())
        return {
            source: {"count": count, "percentage": count / total * 100 if total else 0.0}
            for source, count in counts.items()
        }

    async def generateStageFunnel(self) -> dict[str, int]:
        """Number of people per stage."""
        walk = self._crm.getAllPeople(PeopleFilter(limit=100))
        return dict(Counter([person.stage or "No Stage" async for person in walk]))

    async def enrichLead(self, personId: PersonId, enrichmentData: Mapping[str, Any]) -> Person:
        """Merge enrichment data into a person's custom fields.

        The update is a hard failure; the follow-up event is best-effort.
        """
        person = await self._crm.getPerson(personId)
        updated = await self._crm.upsertPerson(
            {
                "id": personId,
                "customFields": {
                    **person.customFields,
                    **enrichmentData,
                    "enrichedAt": self._clock().isoformat(),
                },
            },
            dedupe=False,
        )

        await attempt(
            "createEvent:Data Enrichment",
            lambda: self._crm.createEvent(
                {
                    "source": "enrichment",
                    "type": "Data Enrichment",
                    "message": "Lead enriched with additional data: "
                    + ", ".join(enrichmentData),
                    "personId": personId,
                    "data": dict(enrichmentData),
                }
            ),
            personId,
        )
        return updated

    async def autoAssignLeads(self, peopleFilter: FilterLike, assignToUserId: int) -> BulkResult:
        """Record an assignment for every person matching a filter.

        The CRM has no assignment endpoint, so each assignment is logged
        as an "Assignment" event carrying the user id.
        """
        result = BulkResult()
        async for person in self._crm.getAllPeople(peopleFilter):
            result.add(
                await attempt(
                    "createEvent:Assignment",
                    lambda person=person: self._crm.createEvent(
                        {
                            "source": "automation",
                            "type": "Assignment",
                            "message": f"Auto-assigned to user {assignToUserId}",
                            "personId": person.id,
                            "data": {"assignedUserId": assignToUserId},
                        }
                    ),
                    person.id,
                )
            )
        logger.info(
            f"Auto-assign to user {assignToUserId}: {result.processed} assigned, "
            f"{result.failed} failed"
        )
        return result

    async def cleanupTestLeads(self) -> BulkResult:
        """Tag people that look like test submissions.

        People are tagged rather than deleted.
        """
        result = BulkResult()
        async for person in self._crm.getAllPeople(PeopleFilter(limit=100)):
            if not isTestLead(person):
                continue
            result.add(
                await attempt(
                    f"addTag:{TEST_LEAD_TAG}",
                    lambda person=person: self._crm.addTag(person.id, TEST_LEAD_TAG),
                    person.id,
                )
            )
        return result


def groupDuplicates(people: list[Person]) -> list[DuplicateGroup]:
    """Group people by normalized email, then by normalized phone digits."""
    emailGroups: dict[str, list[Person]] = {}
    for person in people:
        email = normalizeEmail(person.emails[0].value) if person.emails else None
        if email:
            emailGroups.setdefault(email, []).append(person)

    duplicates = [
        DuplicateGroup(key="email", value=email, people=group)
        for email, group in emailGroups.items()
        if len(group) > 1
    ]
    reported = {p.id for group in duplicates for p in group.people}

    phoneGroups: dict[str, list[Person]] = {}
    for person in people:
        phone = normalizePhone(person.phones[0].value) if person.phones else None
        if phone:
            phoneGroups.setdefault(phone, []).append(person)

    for phone, group in phoneGroups.items():
        if len(group) > 1 and not any(p.id in reported for p in group):
            duplicates.append(DuplicateGroup(key="phone", value=phone, people=group))

    return duplicates


def isTestLead(person: Person) -> bool:
    """Whether a person's name or email looks like test data."""
    name = (person.name or person.displayName).lower()
    email = person.primaryEmail or ""
    return any(pattern in name or pattern in email for pattern in TEST_LEAD_PATTERNS)


def _asUtc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
