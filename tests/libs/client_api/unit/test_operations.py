"""Unit tests for ClientApi operations."""

import json
from datetime import datetime
from unittest.mock import AsyncMock, Mock, patch

import pytest

from client_api.config import ClientApiOptions
from client_api.errors import ClientApiError, ErrorKind
from client_api.http.transport import RequestOptions
from client_api.keys import ComKey, LocKey, PriKey
from client_api.operations import ClientApi, create_client_api
from client_api.retry import RetryConfig

PATH_NAMES = ["orders", "orderPhases", "orderSteps"]
ORDER = LocKey(kt="order", lk="26513")
PHASE = LocKey(kt="orderPhase", lk="25826")
STEP_KEY = ComKey(kt="orderStep", pk="25825", loc=[PHASE, ORDER])
STEP_PATH = "/orders/26513/orderPhases/25826/orderSteps/25825"
STEPS_PATH = "/orders/26513/orderPhases/25826/orderSteps"


def step(pk: str = "25825", **fields):
    return {
        "key": {"kt": "orderStep", "pk": pk, "loc": [PHASE.to_wire(), ORDER.to_wire()]},
        **fields,
    }


@pytest.fixture
def client(mock_http_api, client_options) -> ClientApi:
    return ClientApi(mock_http_api, "orderStep", PATH_NAMES, client_options)


class TestItemOperations:
    """Test operations addressed by an item key."""

    @pytest.mark.asyncio
    async def test_get(self, client, mock_http_api):
        """Test get resolves the path, uses read auth and hydrates events."""
        mock_http_api.get.return_value = step(events={"created": {"at": "2024-01-01T00:00:00Z"}})

        item = await client.get(STEP_KEY)

        url, options = mock_http_api.get.await_args.args
        assert url == STEP_PATH
        assert options.is_authenticated is False
        assert isinstance(item["events"]["created"]["at"], datetime)

    @pytest.mark.asyncio
    async def test_get_not_found_returns_none(self, client, mock_http_api, http_error):
        """Test a 404 on get is an empty result, not an error, and is not retried."""
        mock_http_api.get.side_effect = http_error(404)
        handler = Mock()
        client = ClientApi(
            mock_http_api,
            "orderStep",
            PATH_NAMES,
            ClientApiOptions(retry_config=client.retry_config, error_handler=handler),
        )

        assert await client.get(STEP_KEY) is None
        assert mock_http_api.get.await_count == 1
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_with_wrong_key_type_response(self, client, mock_http_api):
        """Test a response item with another key type is a parse error."""
        mock_http_api.get.return_value = {"key": {"kt": "order", "pk": "1"}}

        with pytest.raises(ClientApiError) as exc_info:
            await client.get(STEP_KEY)

        assert exc_info.value.kind is ErrorKind.PARSE
        assert exc_info.value.context["operation"] == "get"
        assert exc_info.value.context["path"] == STEP_PATH

    @pytest.mark.asyncio
    async def test_get_with_misordered_key_sends_nothing(self, client, mock_http_api):
        """Test configuration errors surface before any request."""
        bad_key = ComKey(kt="orderStep", pk="1", loc=[ORDER, PHASE])

        with pytest.raises(ClientApiError) as exc_info:
            await client.get(bad_key)

        assert exc_info.value.kind is ErrorKind.CONFIGURATION
        mock_http_api.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_retries_then_succeeds(self, client, mock_http_api, http_error):
        mock_http_api.get.side_effect = [http_error(502), step()]

        with patch("asyncio.sleep", new_callable=AsyncMock):
            item = await client.get(STEP_KEY)

        assert item["key"]["pk"] == "25825"
        assert mock_http_api.get.await_count == 2

    @pytest.mark.asyncio
    async def test_get_persistent_server_error(self, client, mock_http_api, http_error):
        """Test persistent 500s are attempted max_retries + 1 times."""
        mock_http_api.get.side_effect = http_error(500)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ClientApiError) as exc_info:
                await client.get(STEP_KEY)

        assert mock_http_api.get.await_count == 4
        assert exc_info.value.context["total_attempts"] == 4
        assert exc_info.value.context["path"] == STEP_PATH

    @pytest.mark.asyncio
    async def test_get_unauthorized_not_retried(self, client, mock_http_api, http_error):
        mock_http_api.get.side_effect = http_error(401)

        with pytest.raises(ClientApiError) as exc_info:
            await client.get(STEP_KEY)

        assert exc_info.value.kind is ErrorKind.AUTHENTICATION
        assert mock_http_api.get.await_count == 1

    @pytest.mark.asyncio
    async def test_get_options_override(self, client, mock_http_api):
        mock_http_api.get.return_value = step()

        await client.get(STEP_KEY, RequestOptions(headers={"X-Trace": "1"}))

        _, options = mock_http_api.get.await_args.args
        assert options.headers == {"X-Trace": "1"}

    @pytest.mark.asyncio
    async def test_update(self, client, mock_http_api):
        """Test update PUTs to the item path with write auth."""
        mock_http_api.put.return_value = step(name="new")

        item = await client.update(STEP_KEY, {"name": "new"})

        url, body, options = mock_http_api.put.await_args.args
        assert (url, body) == (STEP_PATH, {"name": "new"})
        assert options.is_authenticated is True
        assert item["name"] == "new"

    @pytest.mark.asyncio
    async def test_upsert(self, client, mock_http_api):
        """Test upsert flags the body and JSON-encodes locations and options."""
        mock_http_api.put.return_value = step()

        await client.upsert(STEP_KEY, {"name": "x"}, [PHASE, ORDER], {"merge": True})

        url, body, options = mock_http_api.put.await_args.args
        assert url == STEP_PATH
        assert body == {"name": "x", "upsert": True}
        assert json.loads(options.params["locations"]) == [PHASE.to_wire(), ORDER.to_wire()]
        assert json.loads(options.params["options"]) == {"merge": True}

    @pytest.mark.asyncio
    async def test_upsert_without_extras_has_no_params(self, client, mock_http_api):
        mock_http_api.put.return_value = step()

        await client.upsert(STEP_KEY, {"name": "x"})

        _, _, options = mock_http_api.put.await_args.args
        assert options.params is None

    @pytest.mark.asyncio
    async def test_remove(self, client, mock_http_api):
        mock_http_api.delete.return_value = True

        assert await client.remove(STEP_KEY) is True
        url, options = mock_http_api.delete.await_args.args
        assert url == STEP_PATH
        assert options.is_authenticated is True

    @pytest.mark.asyncio
    async def test_remove_not_found_is_success(self, client, mock_http_api, http_error):
        """Test deleting an item that is already gone succeeds without retrying."""
        mock_http_api.delete.side_effect = http_error(404)

        assert await client.remove(STEP_KEY) is True
        assert mock_http_api.delete.await_count == 1

    @pytest.mark.asyncio
    async def test_remove_false_response(self, client, mock_http_api):
        mock_http_api.delete.return_value = False

        assert await client.remove(STEP_KEY) is False

    @pytest.mark.asyncio
    async def test_action(self, client, mock_http_api):
        mock_http_api.post.return_value = step(status="done")

        item = await client.action(STEP_KEY, "complete", {"note": "ok"})

        url, body, _ = mock_http_api.post.await_args.args
        assert url == f"{STEP_PATH}/complete"
        assert body == {"note": "ok"}
        assert item["status"] == "done"

    @pytest.mark.asyncio
    async def test_action_requires_name(self, client, mock_http_api):
        with pytest.raises(ClientApiError) as exc_info:
            await client.action(STEP_KEY, " ")

        assert exc_info.value.kind is ErrorKind.CONFIGURATION
        mock_http_api.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_facet(self, client, mock_http_api):
        """Test facets GET the item facet path and return the raw body."""
        mock_http_api.get.return_value = {"count": 3}

        result = await client.facet(STEP_KEY, "stats", {"detailed": True})

        url, options = mock_http_api.get.await_args.args
        assert url == f"{STEP_PATH}/stats"
        assert options.params == {"detailed": "true"}
        assert result == {"count": 3}


class TestCollectionOperations:
    """Test operations addressed by a location array."""

    @pytest.mark.asyncio
    async def test_create(self, client, mock_http_api):
        mock_http_api.post.return_value = step()

        item = await client.create({"name": "x"}, [PHASE, ORDER])

        url, body, options = mock_http_api.post.await_args.args
        assert url == STEPS_PATH
        assert body == {"name": "x"}
        assert options.is_authenticated is True
        assert item["key"]["kt"] == "orderStep"

    @pytest.mark.asyncio
    async def test_create_with_missing_locations(self, client, mock_http_api):
        with pytest.raises(ClientApiError, match="Not enough locations"):
            await client.create({"name": "x"}, [PHASE])

        mock_http_api.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_all(self, client, mock_http_api):
        """Test all serializes the query and uses the collection auth flag."""
        mock_http_api.get.return_value = [step("1"), step("2")]

        items = await client.all({"status": "open", "limit": 5, "active": True}, [PHASE, ORDER])

        url, options = mock_http_api.get.await_args.args
        assert url == STEPS_PATH
        assert options.params == {"status": "open", "limit": "5", "active": "true"}
        assert options.is_authenticated is False
        assert len(items) == 2

    @pytest.mark.asyncio
    async def test_all_non_list_response(self, client, mock_http_api):
        mock_http_api.get.return_value = {"items": []}

        with pytest.raises(ClientApiError) as exc_info:
            await client.all({}, [PHASE, ORDER])

        assert exc_info.value.kind is ErrorKind.PARSE

    @pytest.mark.asyncio
    async def test_one_adds_limit(self, client, mock_http_api):
        mock_http_api.get.return_value = [step("1")]

        item = await client.one({"status": "open"}, [PHASE, ORDER])

        _, options = mock_http_api.get.await_args.args
        assert options.params == {"status": "open", "limit": "1"}
        assert item["key"]["pk"] == "1"

    @pytest.mark.asyncio
    async def test_one_accepts_items_envelope(self, client, mock_http_api):
        mock_http_api.get.return_value = {"items": [step("7")], "metadata": {"total": 1}}

        item = await client.one(None, [PHASE, ORDER])

        assert item["key"]["pk"] == "7"

    @pytest.mark.asyncio
    async def test_one_empty(self, client, mock_http_api):
        mock_http_api.get.return_value = {"items": []}

        assert await client.one(None, [PHASE, ORDER]) is None

    @pytest.mark.asyncio
    async def test_find(self, client, mock_http_api):
        mock_http_api.get.return_value = [step()]

        items = await client.find("byStatus", {"status": "open"}, [PHASE, ORDER])

        _, options = mock_http_api.get.await_args.args
        assert options.params["finder"] == "byStatus"
        assert json.loads(options.params["finderParams"]) == {"status": "open"}
        assert "one" not in options.params
        assert len(items) == 1

    @pytest.mark.asyncio
    async def test_find_one(self, client, mock_http_api):
        """Test find_one adds one=true and returns the first item."""
        mock_http_api.get.return_value = [step("1"), step("2")]

        item = await client.find_one("byStatus", {"status": "open"}, [PHASE, ORDER])

        _, options = mock_http_api.get.await_args.args
        assert options.params["one"] == "true"
        assert item["key"]["pk"] == "1"

    @pytest.mark.asyncio
    async def test_find_one_no_results(self, client, mock_http_api):
        mock_http_api.get.return_value = []

        assert await client.find_one("byStatus", {}, [PHASE, ORDER]) is None

    @pytest.mark.asyncio
    async def test_all_action_tuple_response(self, client, mock_http_api):
        affected = [step("1")["key"]]
        mock_http_api.post.return_value = [[step("1")], affected]

        items, changed = await client.all_action("archive", {"reason": "x"}, [PHASE, ORDER])

        url, body, _ = mock_http_api.post.await_args.args
        assert url == f"{STEPS_PATH}/archive"
        assert body == {"reason": "x"}
        assert [item["key"]["pk"] for item in items] == ["1"]
        assert changed == affected

    @pytest.mark.parametrize("response", [{}, "{}", None])
    @pytest.mark.asyncio
    async def test_all_action_empty_responses(self, client, mock_http_api, response):
        """Test {} and "{}" mean nothing was returned or affected."""
        mock_http_api.post.return_value = response

        assert await client.all_action("archive", None, [PHASE, ORDER]) == ([], [])

    @pytest.mark.asyncio
    async def test_all_action_unexpected_response(self, client, mock_http_api):
        mock_http_api.post.return_value = {"unexpected": True}

        with pytest.raises(ClientApiError) as exc_info:
            await client.all_action("archive", None, [PHASE, ORDER])

        assert exc_info.value.kind is ErrorKind.PARSE

    @pytest.mark.asyncio
    async def test_all_facet(self, client, mock_http_api):
        mock_http_api.get.return_value = {"total": 10}

        result = await client.all_facet("summary", {"group": "status"}, [PHASE, ORDER])

        url, options = mock_http_api.get.await_args.args
        assert url == f"{STEPS_PATH}/summary"
        assert options.params == {"group": "status"}
        assert result == {"total": 10}


class TestClientApi:
    """Test client construction and shared behavior."""

    def test_empty_path_names_rejected(self, mock_http_api):
        with pytest.raises(ClientApiError) as exc_info:
            ClientApi(mock_http_api, "order", [])

        assert exc_info.value.kind is ErrorKind.CONFIGURATION

    def test_create_client_api_accepts_mapping(self, mock_http_api):
        client = create_client_api(
            mock_http_api, "order", ["orders"], {"read_authenticated": True}
        )

        assert client.options.read_authenticated is True
        assert client.path_names == ("orders",)

    @pytest.mark.asyncio
    async def test_auth_flags(self, mock_http_api):
        """Test each operation family uses its configured auth flag."""
        options = ClientApiOptions(
            read_authenticated=True, all_authenticated=False, write_authenticated=False
        )
        client = ClientApi(mock_http_api, "order", ["orders"], options)
        mock_http_api.get.side_effect = [{"key": {"kt": "order", "pk": "1"}}, []]

        await client.get(PriKey(kt="order", pk="1"))
        await client.all()

        first, second = mock_http_api.get.await_args_list
        assert first.args[1].is_authenticated is True
        assert second.args[1].is_authenticated is False

    @pytest.mark.asyncio
    async def test_base_request_options_preserved(self, mock_http_api):
        """Test verb options from the client config are sent with each request."""
        options = ClientApiOptions(get_options=RequestOptions(headers={"X-App": "t"}, timeout_s=3))
        client = ClientApi(mock_http_api, "order", ["orders"], options)
        mock_http_api.get.return_value = []

        await client.all({"q": "x"})

        _, sent = mock_http_api.get.await_args.args
        assert sent.headers == {"X-App": "t"}
        assert sent.timeout_s == 3
        assert sent.params == {"q": "x"}

    @pytest.mark.asyncio
    async def test_update_retry_config_applies_to_next_call(self, mock_http_api, http_error):
        client = ClientApi(
            mock_http_api,
            "order",
            ["orders"],
            ClientApiOptions(retry_config=RetryConfig(max_retries=3, enable_jitter=False)),
        )
        client.update_retry_config(max_retries=0)
        mock_http_api.get.side_effect = http_error(500)

        with pytest.raises(ClientApiError):
            await client.get(PriKey(kt="order", pk="1"))

        assert mock_http_api.get.await_count == 1
        assert client.retry_config.max_retries == 0


class TestErrorReporting:
    """Test every final failure reaches the configured error handler once."""

    @pytest.fixture
    def handler(self) -> Mock:
        return Mock()

    @pytest.fixture
    def reporting_client(self, mock_http_api, fast_retry_config, handler) -> ClientApi:
        options = ClientApiOptions(retry_config=fast_retry_config, error_handler=handler)
        return ClientApi(mock_http_api, "orderStep", PATH_NAMES, options)

    @pytest.mark.asyncio
    async def test_parse_failure_after_request(self, reporting_client, mock_http_api, handler):
        """Test a response with the wrong key type is reported to the handler."""
        mock_http_api.post.return_value = {"key": {"kt": "wrong", "pk": "1"}}

        with pytest.raises(ClientApiError) as exc_info:
            await reporting_client.create({"name": "x"}, [PHASE, ORDER])

        handler.assert_called_once()
        error, context = handler.call_args.args
        assert error is exc_info.value
        assert error.kind is ErrorKind.PARSE
        assert context["operation"] == "create"
        assert context["path"] == STEPS_PATH

    @pytest.mark.asyncio
    async def test_configuration_failure_before_request(
        self, mock_http_api, fast_retry_config, handler
    ):
        """Test a key that does not fit the hierarchy is reported before sending."""
        client = ClientApi(
            mock_http_api,
            "step",
            ["orders", "steps"],
            ClientApiOptions(retry_config=fast_retry_config, error_handler=handler),
        )

        with pytest.raises(ClientApiError) as exc_info:
            await client.get(PriKey(kt="step", pk="1"))

        assert exc_info.value.kind is ErrorKind.CONFIGURATION
        handler.assert_called_once()
        assert handler.call_args.args[1]["operation"] == "get"
        mock_http_api.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_finder_reported(self, reporting_client, mock_http_api, handler):
        with pytest.raises(ClientApiError):
            await reporting_client.find("", {}, [PHASE, ORDER])

        handler.assert_called_once()
        mock_http_api.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_failure_reported_once(
        self, reporting_client, mock_http_api, handler, http_error
    ):
        mock_http_api.get.side_effect = http_error(500)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ClientApiError):
                await reporting_client.all({}, [PHASE, ORDER])

        handler.assert_called_once()


class TestItemKeyGuard:
    """Test item operations reject location arrays with a configuration error."""

    @pytest.mark.parametrize(
        "call",
        [
            lambda client, key: client.get(key),
            lambda client, key: client.update(key, {"name": "x"}),
            lambda client, key: client.upsert(key, {"name": "x"}),
            lambda client, key: client.remove(key),
            lambda client, key: client.action(key, "complete"),
            lambda client, key: client.facet(key, "stats"),
        ],
        ids=["get", "update", "upsert", "remove", "action", "facet"],
    )
    @pytest.mark.asyncio
    async def test_location_array_rejected(self, client, mock_http_api, call):
        with pytest.raises(ClientApiError) as exc_info:
            await call(client, [PHASE, ORDER])

        assert exc_info.value.kind is ErrorKind.CONFIGURATION
        assert "requires a PriKey or ComKey" in exc_info.value.message
        assert exc_info.value.context["received"] == "list"
        for verb in (mock_http_api.get, mock_http_api.post, mock_http_api.put, mock_http_api.delete):
            verb.assert_not_called()
