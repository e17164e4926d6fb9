"""Unit tests for ValuApi against an in-memory host."""

from __future__ import annotations

import asyncio
import logging

import pytest

from valu_api import (
    DisconnectedError,
    Intent,
    IntentError,
    InvocationError,
    MockHostChannel,
    ModuleRegistrationError,
    RequestTimeoutError,
    ValuApi,
    ValuApiConfig,
    ValuApplication,
)
from valu_api.protocol import MessageKind


def request_id_of(channel: MockHostChannel, kind: MessageKind, index: int = -1):
    """Request identifier of a message the client posted."""
    return channel.messages(kind)[index]["message"]["requestId"]


class RecordingApp(ValuApplication):
    """Application recording every hook call."""

    def __init__(self, api=None, answer=None):
        super().__init__(api)
        self.created: list[Intent] = []
        self.new_intents: list[Intent] = []
        self.routes: list[object] = []
        self.answer = answer

    async def on_create(self, intent):
        self.created.append(intent)

    async def on_new_intent(self, intent):
        self.new_intents.append(intent)
        return self.answer

    def on_route(self, route):
        self.routes.append(route)


class TestConnection:
    """Test the readiness handshake."""

    def test_not_connected_initially(self, api):
        assert api.connected is False
        assert api.application_id is None
        assert api.last_intent is None

    def test_ready_connects(self, channel, api):
        fired = []
        api.add_event_listener(ValuApi.API_READY, lambda: fired.append(True))

        channel.send_ready(application_id="text-chat", action="view", params={"roomId": "r1"})

        assert api.connected is True
        assert api.application_id == "text-chat"
        assert fired == [True]
        assert api.last_intent == Intent("text-chat", "view", {"roomId": "r1"})

    def test_ready_without_launch_fields_uses_defaults(self, channel, api):
        channel.send_ready()

        assert api.connected is True
        assert api.last_intent == Intent(None, "open", {})

    def test_repeated_ready_keeps_first_endpoint(self, channel, api, caplog):
        channel.send_ready(application_id="first")
        channel.send_ready(application_id="second")

        assert api.application_id == "first"
        assert api.last_intent.application_id == "first"
        assert "repeated api:ready" in caplog.text

    def test_foreign_target_is_ignored(self, channel, api):
        channel.send(MessageKind.READY, {"applicationId": "x"}, target="somebodyElse")

        assert api.connected is False

    def test_malformed_messages_dropped_silently(self, channel, api, caplog):
        with caplog.at_level(logging.DEBUG, logger="valu_api"):
            channel.send_raw("not a message")
            channel.send_raw({"name": "api:ready"})
            channel.send_raw(None)

        assert api.connected is False
        assert caplog.text == ""

    @pytest.mark.asyncio
    async def test_ready_waits_for_handshake(self, channel, api):
        waiter = asyncio.create_task(api.ready())
        await asyncio.sleep(0)
        assert not waiter.done()

        channel.send_ready(application_id="x")
        await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_ready_returns_immediately_when_connected(self, connected_api):
        await asyncio.wait_for(connected_api.ready(), timeout=1)


class TestDisconnected:
    """Requests before readiness fail fast."""

    @pytest.mark.asyncio
    async def test_get_api_fails_fast(self, channel, api):
        with pytest.raises(DisconnectedError):
            await api.get_api("users")
        assert channel.recorded_messages == []
        assert api.pending_count == 0

    @pytest.mark.asyncio
    async def test_console_fails_fast(self, api):
        with pytest.raises(ConnectionError):
            await api.run_console_command("/help")

    @pytest.mark.asyncio
    async def test_intents_fail_fast(self, api):
        with pytest.raises(DisconnectedError):
            await api.send_intent(Intent("docs"))
        with pytest.raises(DisconnectedError):
            await api.call_service(Intent("docs"))

    def test_routes_fail_fast(self, api):
        with pytest.raises(DisconnectedError):
            api.push_route("/a")
        with pytest.raises(DisconnectedError):
            api.replace_route("/a")


class TestGetApi:
    """Test API pointer registration."""

    @pytest.mark.asyncio
    async def test_registration_request_shape(self, channel, connected_api):
        task = asyncio.create_task(connected_api.get_api("users", 2))
        await asyncio.sleep(0)

        sent = channel.last_message(MessageKind.CREATE_POINTER)
        assert sent["target"] == "valuApi"
        assert sent["message"]["api"] == "users"
        assert sent["message"]["version"] == 2
        assert sent["message"]["guid"]

        channel.reply(MessageKind.POINTER_CREATED, sent["message"]["requestId"], {"version": 2})
        pointer = await task

        assert pointer.guid == sent["message"]["guid"]
        assert pointer.api_name == "users"

    @pytest.mark.asyncio
    async def test_host_assigned_version_wins(self, channel, connected_api):
        task = asyncio.create_task(connected_api.get_api("x", 2))
        await asyncio.sleep(0)

        channel.reply(
            MessageKind.POINTER_CREATED,
            request_id_of(channel, MessageKind.CREATE_POINTER),
            {"version": 3},
        )

        assert (await task).version == 3

    @pytest.mark.asyncio
    async def test_missing_version_requests_latest(self, channel, connected_api):
        channel.set_response(MessageKind.CREATE_POINTER, {"version": 7})

        pointer = await connected_api.get_api("x")

        assert channel.last_message(MessageKind.CREATE_POINTER)["message"]["version"] is None
        assert pointer.version == 7

    @pytest.mark.asyncio
    async def test_registration_error(self, channel, connected_api):
        channel.set_response(MessageKind.CREATE_POINTER, {"error": "not found"})

        with pytest.raises(ModuleRegistrationError) as exc_info:
            await connected_api.get_api("x")

        assert exc_info.value.message == "not found"
        assert "not found" in str(exc_info.value)
        assert connected_api.pointers == []

    @pytest.mark.asyncio
    async def test_duplicate_pointer_created_is_dropped(self, channel, connected_api, caplog):
        task = asyncio.create_task(connected_api.get_api("x"))
        await asyncio.sleep(0)
        request_id = request_id_of(channel, MessageKind.CREATE_POINTER)

        channel.reply(MessageKind.POINTER_CREATED, request_id, {"version": 1})
        channel.reply(MessageKind.POINTER_CREATED, request_id, {"version": 99})

        assert (await task).version == 1
        assert "Failed to locate pointer create request" in caplog.text

    @pytest.mark.asyncio
    async def test_same_module_twice_gives_distinct_pointers(self, channel, connected_api):
        channel.set_response(MessageKind.CREATE_POINTER, {"version": 1})

        first = await connected_api.get_api("users")
        second = await connected_api.get_api("users")

        assert first.guid != second.guid
        assert len(connected_api.pointers) == 2


class TestRun:
    """Test function calls routed through the client."""

    async def _pointer(self, channel, api, name="users"):
        channel.set_response(MessageKind.CREATE_POINTER, {"version": 1})
        return await api.get_api(name)

    @pytest.mark.asyncio
    async def test_run_round_trip(self, channel, connected_api):
        pointer = await self._pointer(channel, connected_api)

        task = asyncio.create_task(pointer.run("get-user", {"id": 1}))
        await asyncio.sleep(0)

        sent = channel.last_message(MessageKind.RUN)["message"]
        assert sent["apiPointerId"] == pointer.guid
        assert sent["functionName"] == "get-user"
        assert sent["params"] == {"id": 1}

        channel.reply(MessageKind.RUN_COMPLETED, sent["requestId"], {"name": "Ada"})

        assert await task == {"name": "Ada"}
        assert connected_api.pending_count == 0

    @pytest.mark.asyncio
    async def test_run_error_rejects_only_that_call(self, channel, connected_api):
        pointer = await self._pointer(channel, connected_api)

        failing = asyncio.create_task(pointer.run("a"))
        healthy = asyncio.create_task(pointer.run("b"))
        await asyncio.sleep(0)

        channel.reply(
            MessageKind.RUN_COMPLETED,
            request_id_of(channel, MessageKind.RUN, 0),
            {"error": "boom"},
        )

        with pytest.raises(InvocationError, match="boom"):
            await failing
        assert not healthy.done()

        channel.reply(MessageKind.RUN_COMPLETED, request_id_of(channel, MessageKind.RUN, 1), "ok")
        assert await healthy == "ok"

    @pytest.mark.asyncio
    async def test_reverse_order_replies(self, channel, connected_api):
        pointer = await self._pointer(channel, connected_api)

        first = asyncio.create_task(pointer.run("echo", 1))
        second = asyncio.create_task(pointer.run("echo", 2))
        await asyncio.sleep(0)

        first_id = request_id_of(channel, MessageKind.RUN, 0)
        second_id = request_id_of(channel, MessageKind.RUN, 1)
        assert first_id != second_id

        channel.reply(MessageKind.RUN_COMPLETED, second_id, {"echo": 2})
        channel.reply(MessageKind.RUN_COMPLETED, first_id, {"echo": 1})

        assert await first == {"echo": 1}
        assert await second == {"echo": 2}

    @pytest.mark.asyncio
    async def test_unknown_run_reply_is_dropped(self, channel, connected_api, caplog):
        pointer = await self._pointer(channel, connected_api)
        task = asyncio.create_task(pointer.run("a"))
        await asyncio.sleep(0)

        channel.reply(MessageKind.RUN_COMPLETED, 987654, {"stray": True})

        assert "Failed to find API pointer" in caplog.text
        assert not task.done()

        channel.reply(MessageKind.RUN_COMPLETED, request_id_of(channel, MessageKind.RUN), "ok")
        assert await task == "ok"

    @pytest.mark.asyncio
    async def test_module_events_routed_by_guid(self, channel, connected_api):
        first = await self._pointer(channel, connected_api)
        second = await self._pointer(channel, connected_api)
        received = []
        first.add_event_listener("changed", lambda data: received.append(("first", data)))
        second.add_event_listener("changed", lambda data: received.append(("second", data)))

        channel.send(
            MessageKind.EVENT,
            {"apiPointerId": second.guid, "event": "changed", "data": {"id": 5}},
        )

        assert received == [("second", {"id": 5})]

    @pytest.mark.asyncio
    async def test_run_after_close_fails(self, channel, connected_api):
        pointer = await self._pointer(channel, connected_api)
        task = asyncio.create_task(pointer.run("a"))
        await asyncio.sleep(0)

        connected_api.close()

        with pytest.raises(DisconnectedError):
            await task


class TestConsole:
    """Test console commands."""

    @pytest.mark.asyncio
    async def test_console_result(self, channel, connected_api):
        channel.set_response(MessageKind.RUN_CONSOLE, {"users": 3})

        assert await connected_api.run_console_command("/users count") == {"users": 3}
        assert channel.last_message(MessageKind.RUN_CONSOLE)["message"]["command"] == "/users count"

    @pytest.mark.asyncio
    async def test_console_error_text_resolves(self, channel, connected_api):
        task = asyncio.create_task(connected_api.run_console_command("bad"))
        await asyncio.sleep(0)

        channel.reply(
            MessageKind.RUN_CONSOLE_COMPLETED,
            request_id_of(channel, MessageKind.RUN_CONSOLE),
            "ERROR: unknown command",
        )

        assert await task == "ERROR: unknown command"

    @pytest.mark.asyncio
    async def test_console_error_payload_resolves(self, channel, connected_api):
        channel.set_response(MessageKind.RUN_CONSOLE, {"error": "denied"})

        assert await connected_api.run_console_command("/admin") == {"error": "denied"}

    @pytest.mark.asyncio
    async def test_reply_family_isolation(self, channel, connected_api):
        """A console reply cannot settle a pointer registration with the same id."""
        task = asyncio.create_task(connected_api.get_api("users"))
        await asyncio.sleep(0)
        request_id = request_id_of(channel, MessageKind.CREATE_POINTER)

        channel.reply(MessageKind.RUN_CONSOLE_COMPLETED, request_id, "wrong family")

        assert not task.done()
        channel.reply(MessageKind.POINTER_CREATED, request_id, {"version": 1})
        assert (await task).version == 1


class TestIntents:
    """Test outbound intents and service calls."""

    @pytest.mark.asyncio
    async def test_send_intent(self, channel, connected_api):
        channel.set_response(MessageKind.RUN_INTENT, {"opened": True})

        result = await connected_api.send_intent(Intent("docs", "view", {"docId": 1}))

        assert result == {"opened": True}
        sent = channel.last_message(MessageKind.RUN_INTENT)["message"]
        assert sent["applicationId"] == "docs"
        assert sent["action"] == "view"
        assert sent["params"] == {"docId": 1}

    @pytest.mark.asyncio
    async def test_send_intent_error(self, channel, connected_api):
        channel.set_response(MessageKind.RUN_INTENT, {"error": "app not installed"})

        with pytest.raises(IntentError, match="app not installed"):
            await connected_api.send_intent(Intent("docs"))

    @pytest.mark.asyncio
    async def test_call_service_uses_service_kind(self, channel, connected_api):
        channel.set_response(MessageKind.SERVICE_INTENT, {"synced": 4})

        assert await connected_api.call_service(Intent("sync", "run")) == {"synced": 4}
        assert channel.messages(MessageKind.RUN_INTENT) == []

    @pytest.mark.asyncio
    async def test_invalid_intent_rejected_before_sending(self, channel, connected_api):
        with pytest.raises(TypeError):
            await connected_api.send_intent({"applicationId": "docs", "action": "open"})
        with pytest.raises(TypeError):
            await connected_api.call_service(Intent())

        assert channel.messages(MessageKind.RUN_INTENT) == []
        assert channel.messages(MessageKind.SERVICE_INTENT) == []


class TestRoutes:
    """Test fire-and-forget navigation commands."""

    def test_push_route(self, channel, connected_api):
        connected_api.push_route("/rooms/1")

        sent = channel.last_message(MessageKind.RUN_COMMAND)
        assert sent["message"] == {"command": "push-route", "data": "/rooms/1"}
        assert connected_api.pending_count == 0

    def test_replace_route(self, channel, connected_api):
        connected_api.replace_route("/rooms/2")

        sent = channel.last_message(MessageKind.RUN_COMMAND)
        assert sent["message"] == {"command": "replace-route", "data": "/rooms/2"}

    @pytest.mark.asyncio
    async def test_route_trigger(self, channel, connected_api):
        app = RecordingApp()
        connected_api.set_application(app)
        routes = []
        connected_api.add_event_listener(ValuApi.ON_ROUTE, routes.append)

        channel.send(MessageKind.TRIGGER, {"action": "on_route", "data": "/settings"})
        channel.send(MessageKind.TRIGGER, {"action": "something_else", "data": "/x"})

        assert routes == ["/settings"]
        assert app.routes == ["/settings"]


class TestApplication:
    """Test lifecycle hooks of the bound application."""

    @pytest.mark.asyncio
    async def test_on_create_called_on_ready(self, channel, api):
        app = RecordingApp()
        api.set_application(app)

        channel.send_ready(application_id="docs", params={"docId": 3})
        await asyncio.sleep(0)

        assert app.created == [Intent("docs", "open", {"docId": 3})]

    @pytest.mark.asyncio
    async def test_late_binding_replays_launch_intent(self, channel, api):
        channel.send_ready(application_id="docs", action="view", params={"docId": 3})
        app = RecordingApp()

        api.set_application(app)
        await asyncio.sleep(0)

        assert app.created == [Intent("docs", "view", {"docId": 3})]

    def test_binding_before_ready_does_not_call_on_create(self, api):
        app = RecordingApp()

        api.set_application(app)

        assert app.created == []

    def test_binding_outside_event_loop_does_not_raise(self, channel, api, caplog):
        channel.send_ready(application_id="docs")
        app = RecordingApp()

        api.set_application(app)

        assert api.application is app
        assert app.created == []
        assert "outside an event loop" in caplog.text

    @pytest.mark.asyncio
    async def test_new_intent_answer_sent_back(self, channel, connected_api):
        app = RecordingApp(answer={"handled": True})
        connected_api.set_application(app)

        channel.send(
            MessageKind.NEW_INTENT,
            {"applicationId": "docs", "action": "view", "params": {"docId": 9}},
            request_id=55,
        )
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert app.new_intents == [Intent("docs", "view", {"docId": 9})]
        reply = channel.last_message(MessageKind.NEW_INTENT_COMPLETED)
        assert reply["message"] == {"requestId": 55, "result": {"handled": True}}

    @pytest.mark.asyncio
    async def test_new_intent_failure_sent_back(self, channel, connected_api):
        class FailingApp(ValuApplication):
            async def on_new_intent(self, intent):
                raise RuntimeError("cannot open")

        connected_api.set_application(FailingApp())

        channel.send(MessageKind.NEW_INTENT, {"applicationId": "docs"}, request_id=56)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        reply = channel.last_message(MessageKind.NEW_INTENT_COMPLETED)
        assert reply["message"] == {"requestId": 56, "error": "cannot open"}

    def test_sync_hooks_supported(self, channel, connected_api):
        class SyncApp:
            def on_new_intent(self, intent):
                return intent.action

        connected_api.set_application(SyncApp())

        channel.send(MessageKind.NEW_INTENT, {"applicationId": "a", "action": "view"}, request_id=1)

        reply = channel.last_message(MessageKind.NEW_INTENT_COMPLETED)
        assert reply["message"] == {"requestId": 1, "result": "view"}

    def test_new_intent_without_request_id_sends_no_reply(self, channel, connected_api):
        class SyncApp:
            def on_new_intent(self, intent):
                return "ignored"

        connected_api.set_application(SyncApp())

        channel.send(MessageKind.NEW_INTENT, {"applicationId": "a"})

        assert channel.messages(MessageKind.NEW_INTENT_COMPLETED) == []


class TestRequestIds:
    """Test identifier uniqueness."""

    @pytest.mark.asyncio
    async def test_outstanding_requests_have_distinct_ids(self, channel, connected_api):
        tasks = [
            asyncio.create_task(connected_api.run_console_command(f"/c{i}")) for i in range(5)
        ]
        tasks.append(asyncio.create_task(connected_api.get_api("users")))
        tasks.append(asyncio.create_task(connected_api.send_intent(Intent("docs"))))
        await asyncio.sleep(0)

        ids = [m["message"]["requestId"] for m in channel.recorded_messages]
        assert len(ids) == 7
        assert len(set(ids)) == 7
        assert connected_api.pending_count == 7

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        assert connected_api.pending_count == 0


class TestTimeout:
    """Test the optional bounded wait."""

    @pytest.mark.asyncio
    async def test_request_timeout(self, channel):
        api = ValuApi(channel, ValuApiConfig(request_timeout=0.01))
        channel.send_ready(application_id="x")

        with pytest.raises(RequestTimeoutError):
            await api.run_console_command("/slow")

        assert api.pending_count == 0
        api.close()

    @pytest.mark.asyncio
    async def test_pointer_call_timeout_frees_client_entry(self, channel):
        api = ValuApi(channel, ValuApiConfig(request_timeout=0.05))
        channel.send_ready(application_id="x")
        channel.set_response(MessageKind.CREATE_POINTER, {"version": 1})
        pointer = await api.get_api("users")

        with pytest.raises(RequestTimeoutError):
            await pointer.run("slow")

        assert api.pending_count == 0
        assert pointer.pending_count == 0
        api.close()


class TestClose:
    """Test client shutdown."""

    @pytest.mark.asyncio
    async def test_close_fails_pending_and_detaches(self, channel, connected_api):
        task = asyncio.create_task(connected_api.run_console_command("/wait"))
        await asyncio.sleep(0)

        connected_api.close()

        with pytest.raises(DisconnectedError):
            await task
        assert channel.listener_count == 0

    def test_close_is_idempotent(self, api):
        api.close()
        api.close()

    @pytest.mark.asyncio
    async def test_requests_after_close_fail_fast(self, channel, connected_api):
        channel.set_response(MessageKind.CREATE_POINTER, {"version": 1})
        pointer = await connected_api.get_api("users")
        channel.clear()

        connected_api.close()

        assert connected_api.connected is False
        with pytest.raises(DisconnectedError):
            await asyncio.wait_for(connected_api.run_console_command("/x"), timeout=1)
        with pytest.raises(DisconnectedError):
            await asyncio.wait_for(connected_api.get_api("users"), timeout=1)
        with pytest.raises(DisconnectedError):
            await asyncio.wait_for(connected_api.send_intent(Intent("docs")), timeout=1)
        with pytest.raises(DisconnectedError):
            await asyncio.wait_for(pointer.run("get-user"), timeout=1)
        with pytest.raises(DisconnectedError):
            connected_api.push_route("/a")
        with pytest.raises(DisconnectedError):
            await connected_api.ready()

        assert channel.recorded_messages == []
        assert connected_api.pending_count == 0
        assert pointer.pending_count == 0
