"""Tests for CRM webhook processing."""

import pytest

from leadkit.crm import CrmClient
from leadkit.exceptions import ValidationError
from leadkit.llm import LlmClient
from leadSite.services.webhooks import WebhookProcessor


@pytest.fixture
async def crm(crmServer, sleep, fastRetry):
    client = CrmClient(
        apiKey="fub-key",
        baseUrl=crmServer.baseUrl,
        httpClient=crmServer.httpClient(),
        retryConfig=fastRetry,
        sleep=sleep,
    )
    yield client
    await client.aclose()


@pytest.fixture
async def llm(anthropicServer, sleep, fastRetry):
    client = LlmClient(
        apiKey="test-key",
        baseUrl=anthropicServer.baseUrl,
        httpClient=anthropicServer.httpClient(),
        retryConfig=fastRetry,
        sleep=sleep,
    )
    yield client
    await client.aclose()


@pytest.fixture
def processor(crm) -> WebhookProcessor:
    return WebhookProcessor(crm)


class TestDispatch:
    """Tests for event routing."""

    def test_handled_events(self, processor):
        assert set(processor.events) == {
            "peopleCreated",
            "peopleUpdated",
            "peopleStageUpdated",
            "peopleTagsCreated",
            "peopleDeleted",
        }

    async def test_unknown_event_is_ignored(self, processor, crmServer):
        assert await processor.dispatch("dealsCreated", {"id": 1}) == []
        assert crmServer.requests == []

    async def test_missing_person_id(self, processor):
        with pytest.raises(ValidationError) as excInfo:
            await processor.dispatch("peopleCreated", {})

        assert excInfo.value.field == "data.id"


class TestPersonCreated:
    """Tests for new-person handling."""

    async def test_tags_and_notes(self, processor, crmServer):
        crmServer.addPerson(name="Jane Doe", source="Google")

        outcomes = await processor.dispatch("peopleCreated", {"id": 1})

        assert [o.op for o in outcomes] == ["addTag:website-lead", "createEvent:Note"]
        assert all(o.ok for o in outcomes)
        assert crmServer.people[1]["tags"] == ["website-lead"]
        assert crmServer.events[0]["message"] == "New lead captured from website"
        assert crmServer.events[0]["data"] == {"source": "Google", "stage": "Lead"}

    async def test_qualification_with_llm(self, crm, llm, crmServer, anthropicServer):
        crmServer.addPerson(name="Jane Doe", tags=["luxury"])
        anthropicServer.addReply("Strong buyer, call today.")

        outcomes = await WebhookProcessor(crm, llm).dispatch("peopleCreated", {"id": 1})

        assert [o.op for o in outcomes][0] == "qualifyLead"
        assert all(o.ok for o in outcomes)
        note = crmServer.events[0]
        assert note["source"] == "ai-assistant"
        assert note["message"].endswith("Strong buyer, call today.")
        prompt = anthropicServer.requests[0]["messages"][0]["content"]
        assert "- Name: Jane Doe" in prompt
        assert "- Tags: luxury" in prompt

    async def test_qualification_failure_does_not_block_tagging(self, crm, llm, crmServer, anthropicServer):
        crmServer.addPerson(name="Jane Doe")
        anthropicServer.failNext(400)

        outcomes = await WebhookProcessor(crm, llm).dispatch("peopleCreated", {"id": 1})

        assert not outcomes[0].ok
        assert crmServer.people[1]["tags"] == ["website-lead"]

    async def test_missing_person(self, processor, crmServer):
        outcomes = await processor.dispatch("peopleCreated", {"id": 99})

        assert [o.op for o in outcomes] == ["getPerson"]
        assert not outcomes[0].ok
        assert crmServer.events == []

    async def test_tag_failure_is_recorded(self, processor, crmServer):
        crmServer.addPerson(name="Jane Doe")
        crmServer.failNext("POST", r"/people/\d+/tags", 400)

        outcomes = await processor.dispatch("peopleCreated", {"id": 1})

        assert not outcomes[0].ok
        assert outcomes[1].ok
        assert len(crmServer.events) == 1


class TestPersonUpdated:
    """Tests for contact and stage changes."""

    async def test_duplicate_email_note(self, processor, crmServer):
        crmServer.addPerson(name="Jane", emails=["jane@example.com"])
        crmServer.addPerson(name="Jane D", emails=["JANE@example.com"])

        outcomes = await processor.dispatch(
            "peopleUpdated", {"id": 1, "changes": {"emails": ["jane@example.com"]}}
        )

        assert [o.op for o in outcomes] == ["checkDuplicates"]
        assert crmServer.events[0]["message"] == "Potential duplicate found - 2 contacts with this email"

    async def test_unique_contact_adds_nothing(self, processor, crmServer):
        crmServer.addPerson(name="Jane", emails=["jane@example.com"], phones=["702-555-0100"])

        await processor.dispatch("peopleUpdated", {"id": 1, "changes": {"phones": ["x"]}})

        assert crmServer.events == []

    async def test_active_buyer_runs_property_search(self, processor, crmServer):
        crmServer.addPerson(name="Jane", customFields={"budget": "500000", "bedrooms": 3})

        await processor.dispatch("peopleUpdated", {"id": 1, "changes": {"stage": "Active Buyer"}})

        event = crmServer.events[0]
        assert event["type"] == "Property Search"
        assert "- Budget: 500000" in event["message"]
        assert "- Bedrooms: 3" in event["message"]
        assert "Bathrooms" not in event["message"]

    async def test_irrelevant_changes(self, processor, crmServer):
        crmServer.addPerson(name="Jane")

        assert await processor.dispatch("peopleUpdated", {"id": 1, "changes": {"name": "J"}}) == []


class TestStageUpdated:
    """Tests for stage transitions."""

    async def test_active_buyer(self, processor, crmServer):
        crmServer.addPerson(name="Jane")

        outcomes = await processor.dispatch("peopleStageUpdated", {"id": 1, "stage": "Active Buyer"})

        assert [o.op for o in outcomes] == [
            "addTag:active-buyer",
            "propertySearch",
            "createEvent:Stage Change",
        ]
        assert crmServer.people[1]["tags"] == ["active-buyer"]
        assert crmServer.events[-1]["message"] == "Stage updated to: Active Buyer"

    async def test_untagged_stage(self, processor, crmServer):
        crmServer.addPerson(name="Jane")

        outcomes = await processor.dispatch("peopleStageUpdated", {"id": 1, "stage": "Nurture"})

        assert [o.op for o in outcomes] == ["createEvent:Stage Change"]
        assert crmServer.people[1]["tags"] == []


class TestTagsCreated:
    """Tests for tag-driven follow-ups."""

    async def test_neighborhood_and_note_tags(self, processor, crmServer):
        crmServer.addPerson(name="Jane")

        outcomes = await processor.dispatch(
            "peopleTagsCreated", {"id": 1, "tags": ["Summerlin", "luxury", "vip"]}
        )

        assert [o.op for o in outcomes] == ["propertySearch", "createEvent:Note"]
        assert "- Area: Summerlin" in crmServer.events[0]["message"]
        assert crmServer.events[0]["data"]["neighborhood"] == "Summerlin"
        assert "Ridges" in crmServer.events[1]["message"]


class TestPersonDeleted:
    """Tests for cache invalidation on deletion."""

    async def test_drops_cached_reads(self, processor, crm, crmServer):
        crmServer.addPerson(name="Jane")
        crmServer.addPerson(name="Jim")
        await crm.getPerson(1)
        await crm.getPerson(2)
        await crm.listPeople()

        assert await processor.dispatch("peopleDeleted", {"id": 1}) == []

        await crm.getPerson(1)
        await crm.getPerson(2)
        await crm.listPeople()
        assert crmServer.requestCount("GET", r"/people/1") == 2
        assert crmServer.requestCount("GET", r"/people/2") == 1
        assert crmServer.requestCount("GET", r"/people") == 2
