"""Client for the Stash GraphQL API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from ..config import Settings
from ..entity_types import EntityDefinition, get_definition
from ..errors import UpstreamError
from ..utils import format_upstream_timestamp

logger = logging.getLogger(__name__)


class CatalogSource(Protocol):
    """Anything able to hand the sync engine raw upstream records."""

    async def fetch_all(self, entity_type: str) -> list[dict[str, Any]]:
        ...

    async def fetch_changed_since(
        self, entity_type: str, since: str
    ) -> list[dict[str, Any]]:
        ...


_REF = "{ id }"

_FIELDS: dict[str, str] = {
    "tag": f"""
        id name description aliases favorite image_path
        created_at updated_at
        parents {_REF}
    """,
    "studio": f"""
        id name details url favorite rating100 image_path
        created_at updated_at
        parent_studio {_REF}
        tags {_REF}
    """,
    "performer": f"""
        id name disambiguation gender birthdate death_date country ethnicity
        hair_color eye_color height_cm weight measurements details alias_list
        favorite rating100 image_path
        created_at updated_at
        tags {_REF}
    """,
    "gallery": f"""
        id title code date details photographer urls rating100 organized
        created_at updated_at
        studio {_REF}
        folder {{ path }}
        paths {{ cover }}
        performers {_REF}
        tags {_REF}
    """,
    "group": f"""
        id name date duration director synopsis rating100 front_image_path
        created_at updated_at
        studio {_REF}
        tags {_REF}
    """,
    "scene": f"""
        id title code date details director rating100 organized
        o_counter play_count
        created_at updated_at
        files {{ path size width height bit_rate frame_rate video_codec duration }}
        studio {_REF}
        performers {_REF}
        tags {_REF}
        groups {{ scene_index group {_REF} }}
        galleries {_REF}
    """,
    "image": f"""
        id title code date details photographer rating100 o_counter organized
        created_at updated_at
        visual_files {{ ... on ImageFile {{ path width height size }} }}
        paths {{ thumbnail image }}
        studio {_REF}
        performers {_REF}
        tags {_REF}
        galleries {_REF}
    """,
}


def _filter_type_name(definition: EntityDefinition) -> str:
    return f"{definition.key.capitalize()}FilterType"


def build_find_query(definition: EntityDefinition) -> str:
    """Return the paged ``find<Type>s`` GraphQL document for ``definition``."""

    return (
        f"query Find($filter: FindFilterType, $entity_filter: {_filter_type_name(definition)}) {{\n"
        f"  {definition.graphql_query}(filter: $filter, {definition.key}_filter: $entity_filter) {{\n"
        f"    count\n"
        f"    {definition.plural} {{ {_FIELDS[definition.key]} }}\n"
        f"  }}\n"
        f"}}"
    )


class StashClient:
    """Thin wrapper around the Stash GraphQL endpoint."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.upstream_retries
        self._page_size = settings.sync_page_size

    @property
    def endpoint(self) -> str:
        return str(self._settings.stash_url)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"{self._settings.app_name} (stashmirror)",
        }
        if self._settings.stash_api_key:
            headers["ApiKey"] = self._settings.stash_api_key
        return headers

    async def fetch_all(self, entity_type: str) -> list[dict[str, Any]]:
        """Fetch every record of ``entity_type``."""

        return await self._fetch_pages(entity_type, None)

    async def fetch_changed_since(
        self, entity_type: str, since: str
    ) -> list[dict[str, Any]]:
        """Fetch records of ``entity_type`` updated after ``since``."""

        entity_filter = {
            "updated_at": {
                "modifier": "GREATER_THAN",
                "value": format_upstream_timestamp(since),
            }
        }
        return await self._fetch_pages(entity_type, entity_filter)

    async def _fetch_pages(
        self, entity_type: str, entity_filter: dict[str, Any] | None
    ) -> list[dict[str, Any]]:
        definition = get_definition(entity_type)
        query = build_find_query(definition)

        collected: list[dict[str, Any]] = []
        total: int | None = None
        page = 1
        while True:
            variables: dict[str, Any] = {
                "filter": {
                    "page": page,
                    "per_page": self._page_size,
                    "sort": "id",
                    "direction": "ASC",
                }
            }
            if entity_filter is not None:
                variables["entity_filter"] = entity_filter

            data = await self._post(query, variables, entity_type=entity_type)
            envelope = data.get(definition.graphql_query)
            if not isinstance(envelope, dict):
                raise UpstreamError(
                    f"Unexpected Stash response structure for {definition.plural}",
                    entity_type=entity_type,
                )
            records = envelope.get(definition.plural) or []
            if total is None:
                try:
                    total = int(envelope.get("count") or 0)
                except (TypeError, ValueError):
                    total = 0

            collected.extend(record for record in records if isinstance(record, dict))
            logger.debug(
                "Fetched %s page %s (%s/%s)", definition.plural, page, len(collected), total
            )
            if len(records) < self._page_size or len(collected) >= total:
                break
            page += 1

        return collected

    async def _post(
        self, query: str, variables: dict[str, Any], *, entity_type: str
    ) -> dict[str, Any]:
        """Send a GraphQL request, retrying timeouts and 5xx responses."""

        attempt = 0
        while True:
            try:
                response = await self._client.post(
                    self.endpoint,
                    headers=self._headers(),
                    json={"query": query, "variables": variables},
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to Stash (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        entity_type,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise UpstreamError(
                    f"Failed to reach Stash: {exc}", entity_type=entity_type
                ) from exc

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Stash %s during %s fetch. Retrying in %.1fs",
                        response.status_code,
                        entity_type,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            break

        if response.status_code >= 400:
            raise UpstreamError(
                f"Stash responded with HTTP {response.status_code}",
                entity_type=entity_type,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                "Unexpected non-JSON Stash response", entity_type=entity_type
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamError(
                "Unexpected Stash response structure", entity_type=entity_type
            )

        errors = payload.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else errors
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise UpstreamError(
                f"Stash GraphQL error: {message}", entity_type=entity_type
            )
        data = payload.get("data")
        if not isinstance(data, dict):
            raise UpstreamError(
                "Stash response is missing data", entity_type=entity_type
            )
        return data
