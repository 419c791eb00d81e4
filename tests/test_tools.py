import base64
import json

import httpx
import pytest

from orbia.domain.errors import CredentialError, ErrorCode
from orbia.domain.tool import ToolParameterValidator, map_status
from orbia.domain.tool.gmail import extract_body
from orbia.domain.tool.google_docs import extract_text
from orbia.infrastructure.security import InMemoryCredentialProvider, Principal

from .conftest import GOOGLE_TOKEN, OTHER_USER_ID, TEST_USER_ID

VALID_EVENT = {
    "summary": "Board sync",
    "start": "2025-03-01T10:00:00+00:00",
    "end": "2025-03-01T11:00:00+00:00",
}


@pytest.mark.unit
class TestCredentialResolution:
    async def test_no_linked_account_makes_no_network_call(self, registry, transport):
        result = await registry.execute("list_calendar_events", Principal(OTHER_USER_ID), {})

        assert result.success is False
        assert result.code == ErrorCode.NO_ACCOUNT_LINKED
        assert transport.requests == []

    async def test_credential_failure_is_invalid_token(self, registry, credentials, transport):
        async def broken(user_id, provider):
            raise CredentialError("Token expired")

        credentials.get_access_token = broken

        result = await registry.execute("list_documents", Principal(TEST_USER_ID), {})

        assert result.code == ErrorCode.INVALID_TOKEN
        assert transport.requests == []

    async def test_empty_linked_token_is_invalid_token(self):
        provider = InMemoryCredentialProvider()
        provider.link(TEST_USER_ID, "")

        with pytest.raises(CredentialError):
            await provider.get_access_token(TEST_USER_ID, "google")

    async def test_unauthenticated_principal_is_rejected(self, registry, transport):
        result = await registry.execute("list_calendar_events", Principal.anonymous(TEST_USER_ID), {})

        assert result.code == ErrorCode.UNAUTHENTICATED
        assert transport.requests == []

    async def test_bearer_token_is_sent(self, registry, transport):
        transport.handler = lambda request: httpx.Response(200, json={"items": []})

        result = await registry.execute("list_calendar_events", Principal(TEST_USER_ID), {"maxResults": 3})

        assert result.success is True
        assert result.data == []
        request = transport.requests[0]
        assert request.headers["Authorization"] == f"Bearer {GOOGLE_TOKEN}"
        assert request.url.params["maxResults"] == "3"


@pytest.mark.unit
class TestProviderErrors:
    @pytest.mark.parametrize("status, code", [
        (401, ErrorCode.INVALID_TOKEN),
        (403, ErrorCode.INVALID_TOKEN),
        (404, ErrorCode.NOT_FOUND),
        (400, ErrorCode.INVALID_REQUEST),
        (429, ErrorCode.INVALID_REQUEST),
        (500, ErrorCode.UPSTREAM_ERROR),
        (503, ErrorCode.UPSTREAM_ERROR),
    ])
    def test_map_status(self, status, code):
        assert map_status(status) == code

    async def test_not_found_document(self, registry, transport):
        transport.handler = lambda request: httpx.Response(404, json={"error": {"message": "Requested entity was not found."}})

        result = await registry.execute("get_document_content", Principal(TEST_USER_ID), {"documentId": "missing"})

        assert result.code == ErrorCode.NOT_FOUND
        assert result.details == {"status": 404, "message": "Requested entity was not found."}

    async def test_network_failure_is_upstream_error(self, registry, transport):
        def fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport.handler = fail

        result = await registry.execute("list_gmail_messages", Principal(TEST_USER_ID), {})

        assert result.success is False
        assert result.code == ErrorCode.UPSTREAM_ERROR
        assert "connection refused" in result.details


@pytest.mark.unit
class TestValidation:
    async def test_missing_event_fields_are_named(self, registry, transport):
        result = await registry.execute("create_calendar_event", Principal(TEST_USER_ID), {"summary": "  "})

        assert result.code == ErrorCode.INVALID_REQUEST
        assert set(result.fields) == {"summary", "start", "end"}
        assert transport.requests == []

    async def test_bad_datetime_is_rejected(self, registry, transport):
        args = dict(VALID_EVENT, start="next tuesday")

        result = await registry.execute("create_calendar_event", Principal(TEST_USER_ID), args)

        assert result.code == ErrorCode.INVALID_REQUEST
        assert "start" in result.fields
        assert transport.requests == []

    async def test_end_before_start_is_rejected(self, registry):
        args = dict(VALID_EVENT, end="2025-03-01T09:00:00")

        result = await registry.execute("create_calendar_event", Principal(TEST_USER_ID), args)

        assert result.fields == {"end": "'end' must be after 'start'"}

    async def test_invalid_recipient(self, registry, transport):
        args = {"to": "alice@example.com, bob", "subject": "Hi", "body": "Hello"}

        result = await registry.execute("send_gmail_message", Principal(TEST_USER_ID), args)

        assert result.code == ErrorCode.INVALID_REQUEST
        assert result.fields == {"to": "Invalid recipient address: bob"}
        assert transport.requests == []

    def test_wrong_type_is_reported_per_field(self):
        schema = {"type": "object", "properties": {"maxResults": {"type": "integer"}}}

        validation = ToolParameterValidator.validate_tool_call(schema, {"maxResults": "ten"})

        assert validation.is_valid is False
        assert "maxResults" in validation.fields


@pytest.mark.unit
class TestProviderPayloads:
    async def test_create_event_posts_google_shape(self, registry, transport):
        def created(request):
            body = json.loads(request.content)
            return httpx.Response(200, json=dict(body, id="evt_1", htmlLink="https://calendar/evt_1"))

        transport.handler = created

        result = await registry.execute(
            "create_calendar_event", Principal(TEST_USER_ID), dict(VALID_EVENT, attendees=["cfo@example.com"])
        )

        assert result.success is True
        assert result.data["id"] == "evt_1"
        assert result.data["start"] == VALID_EVENT["start"]
        assert result.data["attendees"] == ["cfo@example.com"]
        assert transport.requests[0].method == "POST"

    async def test_delete_event_handles_empty_body(self, registry, transport):
        transport.handler = lambda request: httpx.Response(204)

        result = await registry.execute("delete_calendar_event", Principal(TEST_USER_ID), {"eventId": "evt_1"})

        assert result.data == {"eventId": "evt_1", "deleted": True}
        assert transport.requests[0].url.path.endswith("/calendars/primary/events/evt_1")

    async def test_ids_are_escaped_as_one_path_segment(self, registry, transport):
        transport.handler = lambda request: httpx.Response(204)

        await registry.execute("delete_calendar_event", Principal(TEST_USER_ID), {"eventId": "x/../../users?a"})
        await registry.execute("read_gmail_message", Principal(TEST_USER_ID), {"messageId": "../drafts"})

        assert transport.requests[0].url.raw_path.endswith(b"/calendars/primary/events/x%2F..%2F..%2Fusers%3Fa")
        assert transport.requests[0].url.query == b""
        assert b"/users/me/messages/..%2Fdrafts" in transport.requests[1].url.raw_path

    async def test_recent_mail_fetches_metadata_per_message(self, registry, transport):
        def gmail(request):
            if request.url.path.endswith("/users/me/messages"):
                return httpx.Response(200, json={"messages": [{"id": "m1"}, {"id": "m2"}]})
            message_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={
                "id": message_id,
                "threadId": f"t-{message_id}",
                "snippet": "Quarterly numbers",
                "payload": {"headers": [
                    {"name": "Subject", "value": f"Subject {message_id}"},
                    {"name": "From", "value": "cfo@example.com"},
                ]},
            })

        transport.handler = gmail

        result = await registry.execute("list_gmail_messages", Principal(TEST_USER_ID), {"maxResults": 2})

        assert [m["subject"] for m in result.data] == ["Subject m1", "Subject m2"]
        assert len(transport.requests) == 3

    async def test_send_mail_encodes_raw_message(self, registry, transport):
        transport.handler = lambda request: httpx.Response(200, json={"id": "sent_1", "threadId": "t1"})

        result = await registry.execute(
            "send_gmail_message", Principal(TEST_USER_ID),
            {"to": "alice@example.com", "subject": "Agenda", "body": "See attached.\n\nSent from Mnemo"}
        )

        assert result.data == {"messageId": "sent_1", "threadId": "t1"}
        raw = json.loads(transport.requests[0].content)["raw"]
        decoded = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode()
        assert "To: alice@example.com" in decoded
        assert "Subject: Agenda" in decoded

    def test_extract_body_prefers_plain_text_part(self):
        encoded = base64.urlsafe_b64encode(b"plain body").decode().rstrip("=")
        payload = {
            "mimeType": "multipart/alternative",
            "parts": [
                {"mimeType": "text/plain", "body": {"data": encoded}},
                {"mimeType": "text/html", "body": {"data": "PGI-aHRtbDwvYj4"}},
            ],
        }

        assert extract_body(payload) == "plain body"

    def test_extract_text_reads_paragraphs_and_tables(self):
        body = {"content": [
            {"paragraph": {"elements": [{"textRun": {"content": "Title\n"}}]}},
            {"table": {"tableRows": [{"tableCells": [
                {"content": [{"paragraph": {"elements": [{"textRun": {"content": "cell"}}]}}]}
            ]}]}},
        ]}

        assert extract_text(body) == "Title\ncell"
