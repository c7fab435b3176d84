# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Snapshot cache of the server's tools, resources and prompts.

A refresh issues ``tools/list``, ``resources/list`` and ``prompts/list`` as
three independent requests (following ``nextCursor`` pagination) and swaps in
a new :class:`CatalogSnapshot` only when all three succeed.  Readers therefore
only ever see a complete snapshot from a single fetch.  Before the first
successful fetch the catalog holds :data:`UNINITIALIZED`, which hosts can test
for explicitly instead of relying on empty-list fallbacks.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import anyio
from mcp import types
from pydantic import AnyUrl, BaseModel, TypeAdapter, ValidationError

from ..errors import CatalogError
from ..utils import get_logger
from ..versioning import ServerFeatures


logger = get_logger("mcpconnect.catalog")

Requester = Callable[[str, dict[str, Any] | None], Awaitable[dict[str, Any]]]
"""Sends one JSON-RPC request and returns the raw ``result`` object."""

_URL_ADAPTER = TypeAdapter(AnyUrl)
_MAX_PAGES = 100


class CapabilityKind(str, Enum):
    TOOL = "tool"
    RESOURCE = "resource"
    PROMPT = "prompt"


Capability = types.Tool | types.Resource | types.Prompt


@dataclass(frozen=True, slots=True)
class CatalogSnapshot:
    """Immutable result of one successful refresh.

    ``generation`` is ``0`` only for the uninitialized snapshot and grows by
    one with every successful refresh.
    """

    tools: tuple[types.Tool, ...] = ()
    resources: tuple[types.Resource, ...] = ()
    prompts: tuple[types.Prompt, ...] = ()
    generation: int = 0

    @property
    def initialized(self) -> bool:
        return self.generation > 0

    def __len__(self) -> int:
        return len(self.tools) + len(self.resources) + len(self.prompts)

    def items(self, kind: CapabilityKind) -> tuple[Capability, ...]:
        if kind is CapabilityKind.TOOL:
            return self.tools
        if kind is CapabilityKind.RESOURCE:
            return self.resources
        return self.prompts

    def find_tool(self, name: str) -> types.Tool | None:
        return next((tool for tool in self.tools if tool.name == name), None)

    def find_prompt(self, name: str) -> types.Prompt | None:
        return next((prompt for prompt in self.prompts if prompt.name == name), None)

    def find_resource(self, uri: str) -> types.Resource | None:
        for resource in self.resources:
            if str(resource.uri) == uri:
                return resource
        normalised = _normalise_uri(uri)
        if normalised is None or normalised == uri:
            return None
        return next((resource for resource in self.resources if str(resource.uri) == normalised), None)


UNINITIALIZED = CatalogSnapshot()


def _normalise_uri(uri: str) -> str | None:
    try:
        return str(_URL_ADAPTER.validate_python(uri))
    except ValidationError:
        return None


@dataclass(frozen=True)
class _ListCall:
    kind: CapabilityKind
    method: str
    field: str
    result_type: type[BaseModel]


_LISTS = (
    _ListCall(CapabilityKind.TOOL, "tools/list", "tools", types.ListToolsResult),
    _ListCall(CapabilityKind.RESOURCE, "resources/list", "resources", types.ListResourcesResult),
    _ListCall(CapabilityKind.PROMPT, "prompts/list", "prompts", types.ListPromptsResult),
)


class CapabilityCatalog:
    """Holds the current :class:`CatalogSnapshot`.

    Only the session state machine calls :meth:`refresh` and :meth:`clear`;
    everything else reads :attr:`snapshot`.
    """

    def __init__(self) -> None:
        self._snapshot: CatalogSnapshot = UNINITIALIZED
        self._generation = 0
        self._refresh_lock = anyio.Lock()

    @property
    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    @property
    def tools(self) -> tuple[types.Tool, ...]:
        return self._snapshot.tools

    @property
    def resources(self) -> tuple[types.Resource, ...]:
        return self._snapshot.resources

    @property
    def prompts(self) -> tuple[types.Prompt, ...]:
        return self._snapshot.prompts

    def clear(self) -> None:
        self._snapshot = UNINITIALIZED

    async def refresh(self, request: Requester, features: ServerFeatures | None = None) -> CatalogSnapshot:
        """Fetch all three lists and replace the snapshot.

        Lists the server did not advertise (per *features*) are skipped and
        come back empty.

        Raises:
            CatalogError: Any list call failed; the previous snapshot is kept.
        """
        async with self._refresh_lock:
            wanted = [call for call in _LISTS if _advertised(call.kind, features)]
            fetched: dict[CapabilityKind, tuple[Any, ...]] = {}
            failures: list[tuple[_ListCall, Exception]] = []

            async def load(call: _ListCall, scope: anyio.CancelScope) -> None:
                try:
                    fetched[call.kind] = await self._fetch_all(request, call)
                except Exception as exc:
                    failures.append((call, exc))
                    scope.cancel()

            async with anyio.create_task_group() as tg:
                for call in wanted:
                    tg.start_soon(load, call, tg.cancel_scope)

            if failures:
                call, exc = failures[0]
                logger.warning("Capability refresh failed on %s: %s", call.method, exc)
                raise CatalogError(f"{call.method} failed: {exc}", cause=exc)

            self._generation += 1
            snapshot = CatalogSnapshot(
                tools=fetched.get(CapabilityKind.TOOL, ()),
                resources=fetched.get(CapabilityKind.RESOURCE, ()),
                prompts=fetched.get(CapabilityKind.PROMPT, ()),
                generation=self._generation,
            )
            self._snapshot = snapshot
            logger.debug(
                "Catalog generation %d: %d tools, %d resources, %d prompts",
                snapshot.generation,
                len(snapshot.tools),
                len(snapshot.resources),
                len(snapshot.prompts),
            )
            return snapshot

    @staticmethod
    async def _fetch_all(request: Requester, call: _ListCall) -> tuple[Any, ...]:
        items: list[Any] = []
        cursor: str | None = None
        for _ in range(_MAX_PAGES):
            params = {"cursor": cursor} if cursor else None
            raw = await request(call.method, params)
            try:
                page = call.result_type.model_validate(raw)
            except ValidationError as exc:
                raise CatalogError(f"Malformed {call.method} result", cause=exc) from exc
            items.extend(getattr(page, call.field))
            cursor = getattr(page, "nextCursor", None)
            if not cursor:
                return tuple(items)
        raise CatalogError(f"{call.method} exceeded {_MAX_PAGES} pages")


def _advertised(kind: CapabilityKind, features: ServerFeatures | None) -> bool:
    if features is None:
        return True
    if kind is CapabilityKind.TOOL:
        return features.tools
    if kind is CapabilityKind.RESOURCE:
        return features.resources
    return features.prompts


__all__ = [
    "Capability",
    "CapabilityKind",
    "CapabilityCatalog",
    "CatalogSnapshot",
    "Requester",
    "UNINITIALIZED",
]
