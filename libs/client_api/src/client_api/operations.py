"""REST operations for one entity type, addressed by typed keys.

Every operation resolves its path first, so a key that does not fit the
configured hierarchy fails with a ``configuration`` error before any request is
sent. The request then goes through :class:`HttpWrapper` (one transport call per
attempt, retried per the client's policy) and the decoded body is
post-processed: event timestamps are hydrated and item keys are checked against
the client's primary key type. Errors raised while resolving paths or
post-processing are reported to the client's error handler once, like
failures from the retry executor.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from client_api.config import ClientApiOptions
from client_api.errors import ClientApiError, configuration_error, parse_error
from client_api.http.transport import HttpApi, RequestOptions
from client_api.http.wrapper import HttpWrapper
from client_api.keys import ItemKey, LocKeyArray, is_com_key, is_pri_key
from client_api.paths import PathResolver
from client_api.processing import process_array, process_one, validate_pk
from client_api.query import QueryParams, finder_to_params, query_to_params, to_json
from client_api.retry import RetryConfig, execute_error_handler

logger = logging.getLogger(__name__)

Item = dict[str, Any]


def _segment(name: str, label: str) -> str:
    cleaned = name.strip().strip("/") if isinstance(name, str) else ""
    if not cleaned:
        raise configuration_error(f"{label} name must be a non-empty string", name=name)
    return cleaned


class ClientApi:
    """Operations for one entity type.

    Args:
        api: Transport implementing :class:`HttpApi`.
        pk_type: Primary key type of the entity (``"orderStep"``).
        path_names: Collection names, parent -> child
            (``["orders", "orderPhases", "orderSteps"]``).
        options: Auth flags, retry policy, error handler and base request options.

    Raises:
        ClientApiError: ``configuration`` kind for an empty ``path_names``.
    """

    def __init__(
        self,
        api: HttpApi,
        pk_type: str,
        path_names: Sequence[str],
        options: ClientApiOptions | None = None,
    ) -> None:
        self.pk_type = pk_type
        self.options = options or ClientApiOptions()
        self.resolver = PathResolver(pk_type, path_names)
        self.http = HttpWrapper(
            api,
            retry_config=self.options.retry_config,
            error_handler=self.options.error_handler,
        )
        logger.debug(f"ClientApi for '{pk_type}' at {list(self.resolver.path_names)}")

    @property
    def path_names(self) -> tuple[str, ...]:
        return self.resolver.path_names

    @property
    def retry_config(self) -> RetryConfig:
        return self.http.retry_config

    def update_retry_config(self, **changes: Any) -> RetryConfig:
        """Replace the retry policy; calls already in flight keep their snapshot."""
        return self.http.update_retry_config(**changes)

    @staticmethod
    def _request_options(
        base: RequestOptions,
        authenticated: bool,
        params: QueryParams | None = None,
        override: RequestOptions | None = None,
    ) -> RequestOptions:
        merged = base
        if override is not None:
            merged = base.with_overrides(
                **{name: getattr(override, name) for name in override.model_fields_set}
            )
        changes: dict[str, Any] = {"is_authenticated": authenticated}
        if params is not None:
            changes["params"] = {**(merged.params or {}), **params}
        return merged.with_overrides(**changes)

    def _report(self, error: ClientApiError) -> ClientApiError:
        # Errors raised outside the retry executor still reach the handler once.
        execute_error_handler(self.options.error_handler, error, error.context)
        return error

    def _post_process(
        self, operation: str, path: str, handler: Callable[[Any], Any], response: Any
    ) -> Any:
        try:
            return handler(response)
        except ClientApiError as error:
            raise self._report(error.with_context({"operation": operation, "path": path}))

    def _one_item(self, response: Any) -> Item:
        return validate_pk(process_one(response), self.pk_type)

    def _many_items(self, response: Any) -> list[Item]:
        return validate_pk(process_array(response), self.pk_type)

    def _item_path(
        self, operation: str, key: ItemKey, child: str | None = None, label: str = "Action"
    ) -> str:
        """Resolve the path of the item at ``key``, optionally with a child segment.

        Raises:
            ClientApiError: ``configuration`` kind when ``key`` is not a
                :class:`PriKey` or :class:`ComKey`, or does not fit the hierarchy.
        """
        try:
            if not (is_pri_key(key) or is_com_key(key)):
                raise configuration_error(
                    f"{operation} requires a PriKey or ComKey",
                    received=type(key).__name__,
                )
            path = self.resolver.resolve(key)
            if child is not None:
                path = f"{path}/{_segment(child, label)}"
        except ClientApiError as error:
            raise self._report(error.with_context({"operation": operation}))
        return path

    def _collection_path(
        self,
        operation: str,
        locations: LocKeyArray,
        child: str | None = None,
        label: str = "Action",
    ) -> str:
        try:
            path = self.resolver.resolve(list(locations))
            if child is not None:
                path = f"{path}/{_segment(child, label)}"
        except ClientApiError as error:
            raise self._report(error.with_context({"operation": operation}))
        return path

    def _finder_params(
        self, operation: str, finder: str, finder_params: Mapping[str, Any] | None
    ) -> QueryParams:
        try:
            return finder_to_params(_segment(finder, "Finder"), finder_params)
        except ClientApiError as error:
            raise self._report(error.with_context({"operation": operation}))

    async def get(
        self,
        key: ItemKey,
        options: RequestOptions | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Item | None:
        """Fetch one item; ``None`` when the server answers 404."""
        path = self._item_path("get", key)
        request = self._request_options(
            self.options.get_options, self.options.read_authenticated, override=options
        )
        response = await self.http.execute(
            "GET",
            path,
            options=request,
            operation_name="get",
            context={"path": path, "key": key.to_wire()},
            not_found=None,
            cancel_event=cancel_event,
        )
        if response is None:
            return None
        return self._post_process("get", path, self._one_item, response)

    async def create(
        self,
        item: Mapping[str, Any],
        locations: LocKeyArray = (),
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Item:
        """Create an item in the collection addressed by ``locations``."""
        path = self._collection_path("create", locations)
        request = self._request_options(
            self.options.post_options, self.options.write_authenticated
        )
        response = await self.http.execute(
            "POST",
            path,
            dict(item),
            request,
            operation_name="create",
            context={"path": path, "has_locations": bool(locations)},
            cancel_event=cancel_event,
        )
        return self._post_process("create", path, self._one_item, response)

    async def update(
        self,
        key: ItemKey,
        item: Mapping[str, Any],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Item:
        """Replace fields of the item at ``key`` (PUT)."""
        path = self._item_path("update", key)
        request = self._request_options(
            self.options.put_options, self.options.write_authenticated
        )
        response = await self.http.execute(
            "PUT",
            path,
            dict(item),
            request,
            operation_name="update",
            context={"path": path, "key": key.to_wire()},
            cancel_event=cancel_event,
        )
        return self._post_process("update", path, self._one_item, response)

    async def upsert(
        self,
        key: ItemKey,
        item: Mapping[str, Any],
        locations: LocKeyArray | None = None,
        options: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Item:
        """Create or update the item at ``key``.

        Sends PUT with ``upsert: true`` in the body. ``locations`` and the
        update ``options`` travel as JSON-encoded query parameters.
        """
        path = self._item_path("upsert", key)
        params: QueryParams = {}
        if locations:
            params["locations"] = to_json([location.to_wire() for location in locations])
        if options:
            params["options"] = to_json(dict(options))
        request = self._request_options(
            self.options.put_options,
            self.options.write_authenticated,
            params=params or None,
        )
        response = await self.http.execute(
            "PUT",
            path,
            {**dict(item), "upsert": True},
            request,
            operation_name="upsert",
            context={"path": path, "key": key.to_wire()},
            cancel_event=cancel_event,
        )
        return self._post_process("upsert", path, self._one_item, response)

    async def remove(
        self,
        key: ItemKey,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """Delete the item at ``key``.

        A 404 means the item is already gone and counts as success.

        Returns:
            ``False`` only when the server explicitly answers ``false``.
        """
        path = self._item_path("remove", key)
        request = self._request_options(
            self.options.delete_options, self.options.write_authenticated
        )
        response = await self.http.execute(
            "DELETE",
            path,
            options=request,
            operation_name="remove",
            context={"path": path, "key": key.to_wire()},
            not_found=True,
            cancel_event=cancel_event,
        )
        return response is not False

    async def all(
        self,
        query: Mapping[str, Any] | None = None,
        locations: LocKeyArray = (),
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Item]:
        """List items of the collection matching ``query``."""
        path = self._collection_path("all", locations)
        request = self._request_options(
            self.options.get_options,
            self.options.all_authenticated,
            params=query_to_params(query),
        )
        response = await self.http.execute(
            "GET",
            path,
            options=request,
            operation_name="all",
            context={"path": path},
            cancel_event=cancel_event,
        )
        return self._post_process("all", path, self._many_items, response)

    async def one(
        self,
        query: Mapping[str, Any] | None = None,
        locations: LocKeyArray = (),
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Item | None:
        """Return the first item matching ``query``, or ``None``.

        Sends ``limit=1``. The server may answer with a list or with an
        ``{"items": [...]}`` envelope.
        """
        path = self._collection_path("one", locations)
        params = {**query_to_params(query), "limit": "1"}
        request = self._request_options(
            self.options.get_options, self.options.read_authenticated, params=params
        )
        response = await self.http.execute(
            "GET",
            path,
            options=request,
            operation_name="one",
            context={"path": path},
            cancel_event=cancel_event,
        )
        if isinstance(response, Mapping) and "items" in response:
            response = response["items"]
        items = self._post_process("one", path, self._many_items, response)
        return items[0] if items else None

    async def find(
        self,
        finder: str,
        finder_params: Mapping[str, Any] | None = None,
        locations: LocKeyArray = (),
        options: RequestOptions | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Item]:
        """Run the named server-side finder and return its items."""
        path = self._collection_path("find", locations)
        params = self._finder_params("find", finder, finder_params)
        request = self._request_options(
            self.options.get_options,
            self.options.all_authenticated,
            params=params,
            override=options,
        )
        response = await self.http.execute(
            "GET",
            path,
            options=request,
            operation_name="find",
            context={"path": path, "finder": finder},
            cancel_event=cancel_event,
        )
        return self._post_process("find", path, self._many_items, response)

    async def find_one(
        self,
        finder: str,
        finder_params: Mapping[str, Any] | None = None,
        locations: LocKeyArray = (),
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Item | None:
        """Run the named finder with ``one=true`` and return the first item."""
        path = self._collection_path("find_one", locations)
        params = {**self._finder_params("find_one", finder, finder_params), "one": "true"}
        request = self._request_options(
            self.options.get_options, self.options.all_authenticated, params=params
        )
        response = await self.http.execute(
            "GET",
            path,
            options=request,
            operation_name="find_one",
            context={"path": path, "finder": finder},
            cancel_event=cancel_event,
        )
        items = self._post_process("find_one", path, self._many_items, response)
        if not items:
            logger.debug(f"Finder '{finder}' returned no items at {path}")
            return None
        return items[0]

    async def action(
        self,
        key: ItemKey,
        action: str,
        body: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Item:
        """POST to ``<item path>/<action>`` and return the resulting item."""
        path = self._item_path("action", key, action)
        request = self._request_options(
            self.options.post_options, self.options.write_authenticated
        )
        response = await self.http.execute(
            "POST",
            path,
            dict(body or {}),
            request,
            operation_name="action",
            context={"path": path, "key": key.to_wire(), "action": action},
            cancel_event=cancel_event,
        )
        return self._post_process("action", path, self._one_item, response)

    def _split_all_action(self, response: Any) -> tuple[list[Item], list[Any]]:
        match response:
            case None | "" | "{}":
                return [], []
            case [list() as items, list() as affected]:
                return self._many_items(items), affected
            case list():
                return self._many_items(response), []
            case Mapping() if not response:
                return [], []
            case _:
                raise parse_error(
                    "Unexpected collection action response",
                    response_type=type(response).__name__,
                )

    async def all_action(
        self,
        action: str,
        body: Mapping[str, Any] | None = None,
        locations: LocKeyArray = (),
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[list[Item], list[Any]]:
        """POST to ``<collection path>/<action>``.

        Returns:
            ``(items, affected)``: the returned items and the raw affected keys
            or location arrays. ``{}`` and ``"{}"`` mean nothing changed.
        """
        path = self._collection_path("all_action", locations, action)
        request = self._request_options(
            self.options.post_options, self.options.write_authenticated
        )
        response = await self.http.execute(
            "POST",
            path,
            dict(body or {}),
            request,
            operation_name="all_action",
            context={"path": path, "action": action},
            cancel_event=cancel_event,
        )
        return self._post_process("all_action", path, self._split_all_action, response)

    async def facet(
        self,
        key: ItemKey,
        facet: str,
        params: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """GET ``<item path>/<facet>`` and return the decoded body unchanged."""
        path = self._item_path("facet", key, facet, "Facet")
        request = self._request_options(
            self.options.get_options,
            self.options.write_authenticated,
            params=query_to_params(params),
        )
        return await self.http.execute(
            "GET",
            path,
            options=request,
            operation_name="facet",
            context={"path": path, "key": key.to_wire(), "facet": facet},
            cancel_event=cancel_event,
        )

    async def all_facet(
        self,
        facet: str,
        params: Mapping[str, Any] | None = None,
        locations: LocKeyArray = (),
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """GET ``<collection path>/<facet>`` and return the decoded body unchanged."""
        path = self._collection_path("all_facet", locations, facet, "Facet")
        request = self._request_options(
            self.options.get_options,
            self.options.write_authenticated,
            params=query_to_params(params),
        )
        return await self.http.execute(
            "GET",
            path,
            options=request,
            operation_name="all_facet",
            context={"path": path, "facet": facet},
            cancel_event=cancel_event,
        )


def create_client_api(
    api: HttpApi,
    pk_type: str,
    path_names: Sequence[str],
    options: ClientApiOptions | Mapping[str, Any] | None = None,
) -> ClientApi:
    """Build a :class:`ClientApi`; ``options`` may be a plain mapping."""
    if options is not None and not isinstance(options, ClientApiOptions):
        options = ClientApiOptions.model_validate(dict(options))
    logger.debug("Creating ClientApi for %s", pk_type)
    return ClientApi(api, pk_type, path_names, options)
