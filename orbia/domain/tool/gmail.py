from email.message import EmailMessage
from typing import Any, Dict, List, Optional
import asyncio
import base64

from pydantic import BaseModel

from .base import GoogleApiClient, GoogleTool, path_segment

SUMMARY_HEADERS = ["Subject", "From", "Date"]


class MailSummary(BaseModel):
    id: str
    threadId: Optional[str] = None
    subject: str = ""
    sender: str = ""
    date: str = ""
    snippet: str = ""


class MailMessage(MailSummary):
    to: str = ""
    body: str = ""


def _header(payload: Dict[str, Any], name: str) -> str:
    for header in payload.get("headers", []):
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def _decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def extract_body(payload: Dict[str, Any]) -> str:
    """Plain-text body of a Gmail message payload, searching nested parts"""

    data = (payload.get("body") or {}).get("data")
    if data and payload.get("mimeType", "text/plain").startswith("text/plain"):
        return _decode(data)
    for part in payload.get("parts", []):
        text = extract_body(part)
        if text:
            return text
    if data:
        return _decode(data)
    return ""


def encode_message(to: str, subject: str, body: str, cc: Optional[str] = None, bcc: Optional[str] = None) -> str:
    message = EmailMessage()
    message["To"] = to
    if cc:
        message["Cc"] = cc
    if bcc:
        message["Bcc"] = bcc
    message["Subject"] = subject
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")


class ListGmailMessagesTool(GoogleTool):
    name = "list_gmail_messages"
    description = (
        "List recent Gmail messages with subject, sender, date and snippet. "
        "Supports Gmail search syntax in 'query' and label filters."
    )
    category = "mail"
    parameters_schema = {
        "type": "object",
        "properties": {
            "maxResults": {"type": "integer", "minimum": 1, "maximum": 50, "description": "Number of messages, default 10"},
            "query": {"type": "string", "description": "Gmail search query, e.g. 'is:unread from:boss'"},
            "labelIds": {"type": "array", "items": {"type": "string"}, "description": "Label ids such as INBOX"},
        },
    }

    async def call(self, client: GoogleApiClient, arguments: Dict[str, Any]) -> Any:
        listing = await client.get(
            self.url("users/me/messages"),
            maxResults=arguments.get("maxResults") or 10,
            q=arguments.get("query"),
            labelIds=arguments.get("labelIds")
        )
        refs = (listing or {}).get("messages", [])
        messages = await asyncio.gather(*(
            client.get(
                self.url(f"users/me/messages/{path_segment(ref['id'])}"),
                format="metadata",
                metadataHeaders=SUMMARY_HEADERS
            )
            for ref in refs
        ))
        return [self._summary(message or {}).model_dump() for message in messages]

    @staticmethod
    def _summary(message: Dict[str, Any]) -> MailSummary:
        payload = message.get("payload") or {}
        return MailSummary(
            id=message.get("id", ""),
            threadId=message.get("threadId"),
            subject=_header(payload, "Subject"),
            sender=_header(payload, "From"),
            date=_header(payload, "Date"),
            snippet=message.get("snippet", "")
        )


class ReadGmailMessageTool(GoogleTool):
    name = "read_gmail_message"
    description = "Read the full content of one Gmail message by id. List messages first to find the id."
    category = "mail"
    parameters_schema = {
        "type": "object",
        "properties": {
            "messageId": {"type": "string", "description": "Id of the message"},
        },
        "required": ["messageId"],
    }

    async def call(self, client: GoogleApiClient, arguments: Dict[str, Any]) -> Any:
        message = await client.get(self.url(f"users/me/messages/{path_segment(arguments['messageId'])}"), format="full")
        message = message or {}
        payload = message.get("payload") or {}
        return MailMessage(
            id=message.get("id", arguments["messageId"]),
            threadId=message.get("threadId"),
            subject=_header(payload, "Subject"),
            sender=_header(payload, "From"),
            to=_header(payload, "To"),
            date=_header(payload, "Date"),
            snippet=message.get("snippet", ""),
            body=extract_body(payload)
        ).model_dump()


class SendGmailMessageTool(GoogleTool):
    name = "send_gmail_message"
    description = "Send an email from the user's Gmail account. Confirm recipients and content with the user first."
    category = "mail"
    parameters_schema = {
        "type": "object",
        "properties": {
            "to": {"type": "string", "description": "Recipient address(es), comma separated"},
            "subject": {"type": "string", "description": "Subject line"},
            "body": {"type": "string", "description": "Plain-text body"},
            "cc": {"type": "string", "description": "Cc address(es)"},
            "bcc": {"type": "string", "description": "Bcc address(es)"},
        },
        "required": ["to", "subject", "body"],
    }

    def custom_validation(self, arguments: Dict[str, Any]) -> Dict[str, str]:
        invalid: List[str] = [a.strip() for a in arguments["to"].split(",") if "@" not in a]
        if invalid:
            return {"to": f"Invalid recipient address: {invalid[0]}"}
        return {}

    async def call(self, client: GoogleApiClient, arguments: Dict[str, Any]) -> Any:
        raw = encode_message(
            arguments["to"], arguments["subject"], arguments["body"],
            cc=arguments.get("cc"), bcc=arguments.get("bcc")
        )
        sent = await client.post(self.url("users/me/messages/send"), json={"raw": raw})
        sent = sent or {}
        return {"messageId": sent.get("id"), "threadId": sent.get("threadId")}
