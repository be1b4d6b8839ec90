"""Follow Up Boss style CRM client.

Wraps the CRM's person and event endpoints with:
- Sliding-window rate limiting per context (reads, person writes, events)
- Cached reads with prefix-based invalidation after writes
- Retries with exponential backoff honoring Retry-After
- Deduplication-aware upserts
- Lazy pagination walks
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping

import httpx
from pydantic import ValidationError as PydanticValidationError

from leadkit.cache.responseCache import CacheConfig, ResponseCache
from leadkit.config import Settings
from leadkit.crm.models import PeopleFilter, PeoplePage, Person, PersonEvent, PersonId
from leadkit.crm.normalize import coerceContactValues, normalizeEmail
from leadkit.exceptions import ConfigurationError, UpstreamError, ValidationError
from leadkit.http.retry import RetryConfig, RetryingHttpInvoker
from leadkit.limits.rateLimiter import ContextLimit, RateLimiter, RateLimiterConfig

logger = logging.getLogger("leadkit.crm")

DEFAULT_BASE_URL = "https://api.followupboss.com/v1"

# Rate-limit contexts
READ_CONTEXT = "global"
WRITE_CONTEXT = "people"
EVENTS_CONTEXT = "events"

MAX_PAGE_SIZE = 100


def defaultCrmLimits(systemKey: str | None = None) -> RateLimiterConfig:
    """CRM limits over a 10-second sliding window.

    A system key doubles the read and event allowances.
    """
    multiplier = 2 if systemKey else 1
    return RateLimiterConfig(
        contexts={
            READ_CONTEXT: ContextLimit(125 * multiplier, 10.0),
            WRITE_CONTEXT: ContextLimit(25, 10.0),
            EVENTS_CONTEXT: ContextLimit(100 * multiplier, 10.0),
        }
    )


class CrmClient:
    """Async client for the CRM's people and events API.

    Args:
        apiKey: CRM API key, sent as the Basic-auth username.
        systemKey: Optional system key that raises rate limits.
        baseUrl: API base URL.
        rateLimiter: Shared limiter; a private one is created when omitted.
        cache: Shared read cache; a private one is created when omitted.
        retryConfig: Retry policy for every request.
        httpClient: Optional pre-built httpx.AsyncClient (not closed by this client).
        clientKey: Rate-limit identity of this client.
        enableCaching: Whether reads go through the cache.
        enableRateLimiting: Whether requests are admitted through the limiter.
        sleep: Coroutine used for backoff and rate-limit waits.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        apiKey: str,
        systemKey: str | None = None,
        baseUrl: str = DEFAULT_BASE_URL,
        rateLimiter: RateLimiter | None = None,
        cache: ResponseCache | None = None,
        retryConfig: RetryConfig | None = None,
        httpClient: httpx.AsyncClient | None = None,
        clientKey: str = "crm",
        enableCaching: bool = True,
        enableRateLimiting: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout: float = 30.0,
    ):
        if not apiKey:
            raise ConfigurationError("CRM API key not configured. Set FUB_API_KEY.")

        self._baseUrl = baseUrl.rstrip("/")
        self._clientKey = clientKey
        self._enableCaching = enableCaching
        self._enableRateLimiting = enableRateLimiting
        self._limiter = rateLimiter or RateLimiter(defaultCrmLimits(systemKey), sleep=sleep)
        self._cache = cache if cache is not None else ResponseCache(
            CacheConfig(ttlSeconds=60.0, maxEntries=500, keyPrefix="crm:")
        )
        self._invoker = RetryingHttpInvoker(retryConfig, sleep=sleep)

        self._auth = httpx.BasicAuth(apiKey, "")
        self._headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if systemKey:
            self._headers["X-System-Key"] = systemKey

        self._ownsHttp = httpClient is None
        self._http = httpClient or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def fromSettings(
        cls,
        settings: Settings,
        rateLimiter: RateLimiter | None = None,
        cache: ResponseCache | None = None,
        httpClient: httpx.AsyncClient | None = None,
    ) -> "CrmClient":
        """Build a client from application settings."""
        return cls(
            apiKey=settings.fubApiKey,
            systemKey=settings.fubSystemKey,
            baseUrl=settings.crmBaseUrl,
            rateLimiter=rateLimiter or RateLimiter(settings.crmRateLimits()),
            cache=cache if cache is not None else ResponseCache(settings.crmCacheConfig()),
            retryConfig=settings.retryConfig(),
            httpClient=httpClient,
            enableCaching=settings.enableResponseCache,
            enableRateLimiting=settings.enableRateLimiting,
        )

    @property
    def cache(self) -> ResponseCache:
        """The read cache."""
        return self._cache

    @property
    def rateLimiter(self) -> RateLimiter:
        """The rate limiter."""
        return self._limiter

    async def __aenter__(self) -> "CrmClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._ownsHttp:
            await self._http.aclose()

    # People

    async def getPerson(self, personId: PersonId) -> Person:
        """Get a person by ID.

        Raises:
            NotFoundError: If the CRM reports 404.
        """
        _requireId(personId)
        data = await self._cachedGet(_personKey(personId), f"/people/{personId}")
        return Person.model_validate(data)

    async def listPeople(
        self,
        peopleFilter: PeopleFilter | Mapping[str, Any] | None = None,
    ) -> PeoplePage:
        """List people with filtering and pagination.

        Args:
            peopleFilter: Filter, cursor and offset options.

        Returns:
            One page of results with the continuation cursor.
        """
        resolved = _coerceFilter(peopleFilter)
        data = await self._cachedGet(
            f"people:{resolved.cacheKey()}", "/people", params=resolved.toParams()
        )
        return _parsePage(data)

    async def findPerson(
        self,
        email: str | None = None,
        phone: str | None = None,
    ) -> Person | None:
        """Look up a person for deduplication.

        Email takes precedence when both are given.

        Returns:
            The first match, or None.

        Raises:
            ValidationError: If neither email nor phone is given.
        """
        normalizedEmail = normalizeEmail(email)
        if normalizedEmail:
            page = await self.listPeople(PeopleFilter(email=normalizedEmail, limit=1))
        elif phone and phone.strip():
            page = await self.listPeople(PeopleFilter(phone=phone.strip(), limit=1))
        else:
            raise ValidationError("findPerson requires an email or phone", field="email")
        return page.people[0] if page.people else None

    async def upsertPerson(
        self,
        data: Person | Mapping[str, Any],
        dedupe: bool = True,
    ) -> Person:
        """Create or update a person.

        String shorthand for emails/phones is coerced to the structured
        form. Without an explicit id, an existing match by email (or
        phone) is updated instead of creating a duplicate.

        Args:
            data: Person fields; may include "id".
            dedupe: Whether to look up an existing match first.

        Returns:
            The stored person.
        """
        if isinstance(data, Person):
            payload = data.model_dump(mode="json", exclude_none=True)
        else:
            payload = {k: v for k, v in data.items() if v is not None}

        for fieldName in ("emails", "phones"):
            if fieldName in payload:
                try:
                    payload[fieldName] = coerceContactValues(payload[fieldName])
                except TypeError as e:
                    raise ValidationError(str(e), field=fieldName) from e

        personId = payload.pop("id", None)
        if personId is None and dedupe:
            email = _firstValue(payload.get("emails"))
            phone = _firstValue(payload.get("phones"))
            if email or phone:
                existing = await self.findPerson(email=email, phone=phone)
                if existing is not None:
                    personId = existing.id
                    logger.info(f"Upsert matched existing person {personId}")

        path = f"/people/{personId}" if personId is not None else "/people"
        response = await self._request("PUT", path, WRITE_CONTEXT, body=payload)
        person = Person.model_validate(response)

        await self._cache.invalidatePrefix("people:")
        await self._cache.invalidate(_personKey(person.id))
        return person

    async def addTag(self, personId: PersonId, tag: str) -> None:
        """Add a tag to a person."""
        _requireId(personId)
        if not tag or not tag.strip():
            raise ValidationError("tag must not be blank", field="tag")

        await self._request("POST", f"/people/{personId}/tags", WRITE_CONTEXT, body={"tag": tag})
        await self._cache.invalidate(_personKey(personId))
        await self._cache.invalidatePrefix("people:")

    async def updateStage(self, personId: PersonId, stage: str) -> None:
        """Update a person's lifecycle stage."""
        _requireId(personId)
        if not stage or not stage.strip():
            raise ValidationError("stage must not be blank", field="stage")

        await self._request("PUT", f"/people/{personId}", WRITE_CONTEXT, body={"stage": stage})
        await self._cache.invalidate(_personKey(personId))
        await self._cache.invalidatePrefix("people:")

    async def createEvent(self, event: PersonEvent | Mapping[str, Any]) -> dict[str, Any]:
        """Log an activity event. Events are append-only.

        Returns:
            The remote's response body (includes the event id).
        """
        if not isinstance(event, PersonEvent):
            try:
                event = PersonEvent.model_validate(event)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid event: {e}") from e
        return await self._request("POST", "/events", EVENTS_CONTEXT, body=event.toPayload())

    async def batchGetPeople(self, ids: Iterable[PersonId]) -> list[Person]:
        """Fetch several people by id, one listing call per 100 ids."""
        idList = list(ids)
        people: list[Person] = []
        for start in range(0, len(idList), MAX_PAGE_SIZE):
            chunk = tuple(idList[start : start + MAX_PAGE_SIZE])
            page = await self.listPeople(PeopleFilter(ids=chunk, limit=MAX_PAGE_SIZE))
            people.extend(page.people)
        return people

    def getAllPeople(
        self,
        peopleFilter: PeopleFilter | Mapping[str, Any] | None = None,
    ) -> "PeopleWalk":
        """Walk every person matching a filter, page by page.

        Returns:
            A lazy async iterable; each iteration restarts from the first page.
        """
        return PeopleWalk(self, _coerceFilter(peopleFilter))

    # Transport

    async def _cachedGet(
        self,
        cacheKey: str,
        path: str,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        if self._enableCaching:
            entry = await self._cache.get(cacheKey)
            if entry is not None:
                logger.debug(f"Cache hit: {cacheKey}")
                return entry.value

        data = await self._request("GET", path, READ_CONTEXT, params=params)

        if self._enableCaching:
            await self._cache.put(cacheKey, data)
        return data

    async def _request(
        self,
        method: str,
        path: str,
        context: str,
        params: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> Any:
        url = f"{self._baseUrl}{path}"

        async def send() -> httpx.Response:
            return await self._http.request(
                method,
                url,
                params=params,
                json=body,
                headers=self._headers,
                auth=self._auth,
            )

        admission = None
        if self._enableRateLimiting:
            async def admission() -> None:
                await self._limiter.checkLimit(self._clientKey, context)

        logger.debug(f"{method} {path} ({context})")
        response = await self._invoker.invoke(
            send, admission=admission, description=f"CRM {method} {path}"
        )

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"CRM returned invalid JSON for {method} {path}", response.status_code
            ) from e


class PeopleWalk:
    """Lazy, restartable walk over every page of a people listing.

    Each `async for` starts again from the first page; a walk cannot be
    resumed mid-stream. The walk ends when the remote stops returning a
    continuation cursor.

    Args:
        client: Client used to fetch pages.
        peopleFilter: Filter applied to every page.
    """

    def __init__(self, client: CrmClient, peopleFilter: PeopleFilter):
        self._client = client
        self._filter = peopleFilter.withCursor(None)
        self.pagesFetched = 0

    def __aiter__(self) -> AsyncIterator[Person]:
        return self._walk()

    async def _walk(self) -> AsyncIterator[Person]:
        pageFilter = self._filter
        while True:
            page = await self._client.listPeople(pageFilter)
            self.pagesFetched += 1
            for person in page.people:
                yield person
            if not page.next:
                return
            pageFilter = self._filter.withCursor(page.next)

    async def collect(self) -> list[Person]:
        """Drain the walk into a list."""
        return [person async for person in self]


def _personKey(personId: PersonId) -> str:
    return f"person:{personId}"


def _requireId(personId: Any) -> None:
    if personId is None or (isinstance(personId, str) and not personId.strip()):
        raise ValidationError("person id is required", field="id")


def _coerceFilter(peopleFilter: PeopleFilter | Mapping[str, Any] | None) -> PeopleFilter:
    if peopleFilter is None:
        return PeopleFilter()
    if isinstance(peopleFilter, PeopleFilter):
        return peopleFilter
    try:
        return PeopleFilter.model_validate(dict(peopleFilter))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid people filter: {e}") from e


def _firstValue(values: list[dict[str, Any]] | None) -> str | None:
    if not values:
        return None
    value = values[0].get("value")
    return value if isinstance(value, str) else None


def _parsePage(data: Any) -> PeoplePage:
    if not isinstance(data, dict):
        raise UpstreamError("CRM returned an unexpected people listing")
    metadata = data.get("_metadata") or {}
    return PeoplePage(
        people=[Person.model_validate(p) for p in data.get("people") or []],
        next=metadata.get("next") or data.get("next"),
        total=metadata.get("total", data.get("total")),
    )
