"""In-memory CRM remote for testing.

Serves the people and events endpoints through httpx.MockTransport so
CrmClient can be exercised end to end without network access.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from leadkit.crm.normalize import normalizeEmail, normalizePhone

logger = logging.getLogger("leadkit.testing")

DEFAULT_BASE_URL = "https://crm.test/v1"


@dataclass
class InjectedFailure:
    """A canned response returned instead of the normal route.

    Attributes:
        method: HTTP method to match.
        pathPattern: Regex matched against the path below the base URL.
        status: Status code to return.
        times: Remaining matches before the failure is used up.
        headers: Extra response headers (e.g. Retry-After).
        body: JSON body of the response.
    """

    method: str
    pathPattern: str
    status: int
    times: int = 1
    headers: dict[str, str] | None = None
    body: dict[str, Any] | None = None

    def matches(self, method: str, path: str) -> bool:
        return self.method == method and re.fullmatch(self.pathPattern, path) is not None


class FakeCrmServer:
    """Fake Follow Up Boss style API backed by dictionaries.

    Args:
        baseUrl: Base URL the client is configured with.
        now: Fixed time used for created/updated stamps (defaults to wall clock).
    """

    def __init__(self, baseUrl: str = DEFAULT_BASE_URL, now: datetime | None = None):
        self.baseUrl = baseUrl.rstrip("/")
        self._basePath = httpx.URL(self.baseUrl).path.rstrip("/")
        self._now = now
        self.people: dict[int, dict[str, Any]] = {}
        self.events: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self._failures: list[InjectedFailure] = []
        self._nextId = 1

    # Setup helpers

    def addPerson(self, **fields: Any) -> dict[str, Any]:
        """Insert a person directly into the store."""
        person = self._newPerson(fields)
        if "updated" in fields:
            person["updated"] = fields["updated"]
        return person

    def failNext(
        self,
        method: str,
        pathPattern: str,
        status: int,
        times: int = 1,
        headers: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> None:
        """Make the next matching requests fail with a status."""
        self._failures.append(
            InjectedFailure(
                method=method.upper(),
                pathPattern=pathPattern,
                status=status,
                times=times,
                headers=headers,
                body=body,
            )
        )

    def transport(self) -> httpx.MockTransport:
        """Transport serving this fake."""
        return httpx.MockTransport(self.handle)

    def httpClient(self) -> httpx.AsyncClient:
        """An httpx client wired to this fake."""
        return httpx.AsyncClient(transport=self.transport())

    def requestCount(self, method: str | None = None, pathPattern: str | None = None) -> int:
        """Count recorded requests, optionally by method and path regex."""
        return sum(
            1
            for r in self.requests
            if (method is None or r.method == method.upper())
            and (pathPattern is None or re.fullmatch(pathPattern, self._path(r)))
        )

    # Routing

    def handle(self, request: httpx.Request) -> httpx.Response:
        """Handle one request."""
        self.requests.append(request)
        path = self._path(request)

        for failure in self._failures:
            if failure.times > 0 and failure.matches(request.method, path):
                failure.times -= 1
                logger.debug(f"Injected {failure.status} for {request.method} {path}")
                return httpx.Response(
                    failure.status,
                    headers=failure.headers,
                    json=failure.body or {"errorMessage": f"Injected {failure.status}"},
                )

        if path == "/people":
            if request.method == "GET":
                return self._listPeople(request)
            if request.method == "PUT":
                return self._createPerson(request)
        if path == "/events" and request.method == "POST":
            return self._createEvent(request)

        match = re.fullmatch(r"/people/(\d+)(/tags)?", path)
        if match:
            personId = int(match.group(1))
            person = self.people.get(personId)
            if person is None:
                return httpx.Response(404, json={"errorMessage": f"Person {personId} not found"})
            if match.group(2) and request.method == "POST":
                return self._addTag(person, request)
            if request.method == "GET":
                return httpx.Response(200, json=person)
            if request.method == "PUT":
                return self._updatePerson(person, request)

        return httpx.Response(405, json={"errorMessage": f"{request.method} {path} not supported"})

    def _listPeople(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        limit = int(params.get("limit", 50))
        cursor = params.get("next")
        offset = int(cursor.removeprefix("cursor-")) if cursor else int(params.get("offset", 0))

        matches = [p for p in self.people.values() if self._matches(p, params)]
        page = matches[offset : offset + limit]
        nextOffset = offset + limit
        nextCursor = f"cursor-{nextOffset}" if nextOffset < len(matches) else None

        return httpx.Response(
            200,
            json={
                "_metadata": {
                    "collection": "people",
                    "offset": offset,
                    "limit": limit,
                    "total": len(matches),
                    "next": nextCursor,
                },
                "people": page,
            },
        )

    def _matches(self, person: dict[str, Any], params: httpx.QueryParams) -> bool:
        email = normalizeEmail(params.get("email"))
        if email and email not in {normalizeEmail(e["value"]) for e in person["emails"]}:
            return False
        phone = normalizePhone(params.get("phone"))
        if phone and phone not in {normalizePhone(p["value"]) for p in person["phones"]}:
            return False
        for key in ("stage", "source"):
            if params.get(key) and person.get(key) != params[key]:
                return False
        if params.get("ids"):
            ids = {int(i) for i in params["ids"].split(",")}
            if person["id"] not in ids:
                return False
        createdAfter = params.get("createdAfter")
        if createdAfter and person["created"] < createdAfter:
            return False
        return True

    def _createPerson(self, request: httpx.Request) -> httpx.Response:
        person = self._newPerson(json.loads(request.content))
        return httpx.Response(201, json=person)

    def _updatePerson(self, person: dict[str, Any], request: httpx.Request) -> httpx.Response:
        changes = json.loads(request.content)
        changes.pop("id", None)
        person.update(changes)
        person["updated"] = self._stamp()
        return httpx.Response(200, json=person)

    def _addTag(self, person: dict[str, Any], request: httpx.Request) -> httpx.Response:
        tag = json.loads(request.content)["tag"]
        if tag not in person["tags"]:
            person["tags"].append(tag)
        return httpx.Response(200, json=person)

    def _createEvent(self, request: httpx.Request) -> httpx.Response:
        event = {"id": len(self.events) + 1, **json.loads(request.content)}
        self.events.append(event)
        return httpx.Response(201, json=event)

    def _newPerson(self, fields: dict[str, Any]) -> dict[str, Any]:
        personId = self._nextId
        self._nextId += 1
        stamp = self._stamp()
        person = {
            "id": personId,
            "name": fields.get("name"),
            "firstName": fields.get("firstName"),
            "lastName": fields.get("lastName"),
            "emails": _contacts(fields.get("emails")),
            "phones": _contacts(fields.get("phones")),
            "stage": fields.get("stage", "Lead"),
            "source": fields.get("source"),
            "tags": list(fields.get("tags") or []),
            "customFields": dict(fields.get("customFields") or {}),
            "created": fields.get("created", stamp),
            "updated": stamp,
        }
        self.people[personId] = person
        return person

    def _stamp(self) -> str:
        return (self._now or datetime.now(timezone.utc)).isoformat()

    def _path(self, request: httpx.Request) -> str:
        return request.url.path.removeprefix(self._basePath) or "/"


def _contacts(values: Any) -> list[dict[str, Any]]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    return [{"value": v} if isinstance(v, str) else dict(v) for v in values]
