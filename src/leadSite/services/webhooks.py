"""CRM webhook processing.

Each webhook event fans out to tagging, notes and follow-up lookups.
Every side effect is best-effort: failures are recorded as outcomes
and logged, and never fail the webhook itself.
"""

import json
import logging
from typing import Any, Awaitable, Callable

from leadkit.crm.client import CrmClient
from leadkit.crm.leadCapture import Outcome, attempt
from leadkit.crm.models import PeopleFilter, PersonId
from leadkit.exceptions import LeadkitError, ValidationError
from leadkit.llm.client import LlmClient
from leadkit.llm.prompts import PROPERTY_SEARCH

logger = logging.getLogger("leadSite.webhooks")

STAGE_TAGS = {
    "Active Buyer": "active-buyer",
    "Active Seller": "active-seller",
    "Under Contract": "under-contract",
    "Closed": "closed",
}

NEIGHBORHOOD_TAGS = {"summerlin", "henderson", "green valley"}

TAG_NOTES = {
    "luxury": "Tagged as luxury buyer - recommend Ridges, Southern Highlands",
    "55+": "Tagged as 55+ - recommend Sun City Summerlin, Sun City Anthem",
}


class WebhookProcessor:
    """Dispatches CRM webhook events to their handlers.

    Args:
        crm: CRM client for follow-up calls.
        llm: Optional chat client used to qualify new leads.
    """

    def __init__(self, crm: CrmClient, llm: LlmClient | None = None):
        self._crm = crm
        self._llm = llm
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[list[Outcome]]]] = {
            "peopleCreated": self.person_created,
            "peopleUpdated": self.person_updated,
            "peopleStageUpdated": self.stage_updated,
            "peopleTagsCreated": self.tags_created,
            "peopleDeleted": self.person_deleted,
        }

    @property
    def events(self) -> list[str]:
        """Handled event names."""
        return list(self._handlers)

    async def dispatch(self, event: str, data: dict[str, Any]) -> list[Outcome]:
        """Run the handler for an event.

        Returns:
            Outcomes of every side effect; empty for unhandled events.

        Raises:
            ValidationError: If a handled event carries no person id.
        """
        handler = self._handlers.get(event)
        if handler is None:
            logger.info(f"Unhandled webhook event: {event}")
            return []
        if data.get("id") is None:
            raise ValidationError(f"{event} payload has no person id", field="data.id")

        logger.info(f"Webhook {event} for person {data['id']}")
        outcomes = await handler(data)
        failures = [o for o in outcomes if not o.ok]
        if failures:
            logger.warning(f"Webhook {event}: {len(failures)} of {len(outcomes)} actions failed")
        return outcomes

    async def person_created(self, data: dict[str, Any]) -> list[Outcome]:
        personId = data["id"]
        try:
            person = await self._crm.getPerson(personId)
        except LeadkitError as e:
            logger.warning(f"Could not load new person {personId}: {e}")
            return [Outcome(op="getPerson", error=str(e), personId=personId)]

        outcomes = []
        if self._llm is not None:
            outcomes.append(
                await attempt("qualifyLead", lambda: self._qualify(person), personId)
            )
        outcomes.append(
            await attempt("addTag:website-lead", lambda: self._crm.addTag(personId, "website-lead"), personId)
        )
        outcomes.append(
            await attempt(
                "createEvent:Note",
                lambda: self._crm.createEvent(
                    {
                        "source": "website",
                        "type": "Note",
                        "message": "New lead captured from website",
                        "personId": personId,
                        "data": {
                            "source": person.source or "website",
                            "stage": person.stage or "new",
                        },
                    }
                ),
                personId,
            )
        )
        return outcomes

    async def person_updated(self, data: dict[str, Any]) -> list[Outcome]:
        personId = data["id"]
        changes = data.get("changes") or {}
        outcomes = []
        if changes.get("emails") or changes.get("phones"):
            outcomes.append(
                await attempt("checkDuplicates", lambda: self._check_duplicates(personId), personId)
            )
        if changes.get("stage") == "Active Buyer":
            outcomes.append(
                await attempt("propertySearch", lambda: self._property_search(personId), personId)
            )
        return outcomes

    async def stage_updated(self, data: dict[str, Any]) -> list[Outcome]:
        personId = data["id"]
        stage = data.get("stage")
        outcomes = []

        tag = STAGE_TAGS.get(stage or "")
        if tag:
            outcomes.append(
                await attempt(f"addTag:{tag}", lambda: self._crm.addTag(personId, tag), personId)
            )
        if stage == "Active Buyer":
            outcomes.append(
                await attempt("propertySearch", lambda: self._property_search(personId), personId)
            )
        outcomes.append(
            await attempt(
                "createEvent:Stage Change",
                lambda: self._crm.createEvent(
                    {
                        "source": "automation",
                        "type": "Stage Change",
                        "message": f"Stage updated to: {stage}",
                        "personId": personId,
                    }
                ),
                personId,
            )
        )
        return outcomes

    async def tags_created(self, data: dict[str, Any]) -> list[Outcome]:
        personId = data["id"]
        outcomes = []
        for tag in data.get("tags") or []:
            lowered = tag.lower()
            if lowered in NEIGHBORHOOD_TAGS:
                outcomes.append(
                    await attempt(
                        "propertySearch",
                        lambda tag=tag: self._property_search(personId, tag),
                        personId,
                    )
                )
            elif lowered in TAG_NOTES:
                outcomes.append(
                    await attempt(
                        "createEvent:Note",
                        lambda lowered=lowered: self._crm.createEvent(
                            {
                                "source": "automation",
                                "type": "Note",
                                "message": TAG_NOTES[lowered],
                                "personId": personId,
                            }
                        ),
                        personId,
                    )
                )
        return outcomes

    async def person_deleted(self, data: dict[str, Any]) -> list[Outcome]:
        personId = data["id"]
        await self._crm.cache.invalidate(f"person:{personId}")
        await self._crm.cache.invalidatePrefix("people:")
        logger.info(f"Person {personId} deleted; cached copies dropped")
        return []

    async def _qualify(self, person: Any) -> None:
        context = "\n".join(
            [
                "New lead information:",
                f"- Name: {person.name or 'Unknown'}",
                f"- Source: {person.source or 'Unknown'}",
                f"- Stage: {person.stage or 'New'}",
                f"- Tags: {', '.join(person.tags) or 'None'}",
                f"- Custom fields: {json.dumps(person.customFields, default=str)}",
                "",
                "Based on this information, provide a brief lead qualification "
                "summary and recommended next steps.",
            ]
        )
        response = await self._llm.sendMessage(
            {
                "messages": [{"role": "user", "content": context}],
                "systemPrompt": PROPERTY_SEARCH.system,
                "maxTokens": 500,
                "enableCache": False,
                "useResponseCache": False,
            }
        )
        await self._crm.createEvent(
            {
                "source": "ai-assistant",
                "type": "Note",
                "message": f"AI Lead Qualification:\n\n{response.content}",
                "personId": person.id,
                "data": {
                    "aiQualification": True,
                    "cost": response.cost.total if response.cost else None,
                },
            }
        )

    async def _check_duplicates(self, personId: PersonId) -> None:
        person = await self._crm.getPerson(personId)
        lookups = []
        if person.emails:
            lookups.append(("email", PeopleFilter(email=person.emails[0].value, limit=10)))
        if person.phones:
            lookups.append(("phone", PeopleFilter(phone=person.phones[0].value, limit=10)))

        for kind, peopleFilter in lookups:
            page = await self._crm.listPeople(peopleFilter)
            if len(page.people) > 1:
                await self._crm.createEvent(
                    {
                        "source": "automation",
                        "type": "Note",
                        "message": f"Potential duplicate found - {len(page.people)} contacts with this {kind}",
                        "personId": personId,
                    }
                )

    async def _property_search(self, personId: PersonId, neighborhood: str | None = None) -> None:
        person = await self._crm.getPerson(personId)
        criteria = {
            "Area": neighborhood,
            "Budget": person.customFields.get("budget"),
            "Bedrooms": person.customFields.get("bedrooms"),
            "Bathrooms": person.customFields.get("bathrooms"),
        }
        lines = [f"- {label}: {value}" for label, value in criteria.items() if value]
        await self._crm.createEvent(
            {
                "source": "automation",
                "type": "Property Search",
                "message": "Property search criteria:\n" + "\n".join(lines),
                "personId": personId,
                "data": {
                    "neighborhood": neighborhood,
                    "budget": criteria["Budget"],
                    "bedrooms": criteria["Bedrooms"],
                    "bathrooms": criteria["Bathrooms"],
                },
            }
        )
