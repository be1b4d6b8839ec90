"""CRM integration: client, lead capture and bulk automation."""

from leadkit.crm.automation import AutomationFacade, BulkResult, DuplicateGroup, SyncResult
from leadkit.crm.client import CrmClient, PeopleWalk, defaultCrmLimits
from leadkit.crm.leadCapture import (
    LeadCapturePipeline,
    LeadCaptureResult,
    LeadSubmission,
    Outcome,
    buildSearchCriteria,
    enrichSource,
    getPropertyTags,
    getSourceTag,
)
from leadkit.crm.models import (
    LIFECYCLE_STAGES,
    ContactValue,
    PeopleFilter,
    PeoplePage,
    Person,
    PersonEvent,
)
from leadkit.crm.normalize import normalizeEmail, normalizePhone

__all__ = [
    "CrmClient",
    "PeopleWalk",
    "defaultCrmLimits",
    "Person",
    "ContactValue",
    "PersonEvent",
    "PeopleFilter",
    "PeoplePage",
    "LIFECYCLE_STAGES",
    "LeadSubmission",
    "LeadCapturePipeline",
    "LeadCaptureResult",
    "Outcome",
    "enrichSource",
    "getSourceTag",
    "getPropertyTags",
    "buildSearchCriteria",
    "AutomationFacade",
    "BulkResult",
    "DuplicateGroup",
    "SyncResult",
    "normalizeEmail",
    "normalizePhone",
]
