from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .base import GoogleApiClient, GoogleTool, path_segment

GOOGLE_DOC_MIME_TYPE = "application/vnd.google-apps.document"


class DocumentSummary(BaseModel):
    id: str
    name: str = ""
    createdTime: Optional[str] = None
    modifiedTime: Optional[str] = None
    link: Optional[str] = None


class DocumentContent(BaseModel):
    id: str
    title: str = ""
    content: str = ""


def extract_text(body: Dict[str, Any]) -> str:
    """Concatenate the text runs of a Docs API document body"""

    parts: List[str] = []
    for element in body.get("content", []):
        paragraph = element.get("paragraph")
        if paragraph:
            for run in paragraph.get("elements", []):
                text = (run.get("textRun") or {}).get("content")
                if text:
                    parts.append(text)
        table = element.get("table")
        if table:
            for row in table.get("tableRows", []):
                for cell in row.get("tableCells", []):
                    parts.append(extract_text(cell))
    return "".join(parts)


class ListDocumentsTool(GoogleTool):
    name = "list_documents"
    description = "List the user's most recently modified Google Docs."
    category = "documents"
    parameters_schema = {
        "type": "object",
        "properties": {
            "maxResults": {"type": "integer", "minimum": 1, "maximum": 50, "description": "Number of documents, default 10"},
        },
    }

    async def call(self, client: GoogleApiClient, arguments: Dict[str, Any]) -> Any:
        body = await client.get(
            self.url("files"),
            q=f"mimeType='{GOOGLE_DOC_MIME_TYPE}'",
            fields="files(id, name, createdTime, modifiedTime, webViewLink)",
            orderBy="modifiedTime desc",
            pageSize=arguments.get("maxResults") or 10
        )
        return [
            DocumentSummary(
                id=f.get("id", ""),
                name=f.get("name", ""),
                createdTime=f.get("createdTime"),
                modifiedTime=f.get("modifiedTime"),
                link=f.get("webViewLink")
            ).model_dump()
            for f in (body or {}).get("files", [])
        ]


class GetDocumentContentTool(GoogleTool):
    name = "get_document_content"
    description = "Read the text of a Google Doc by id. List documents first to find the id."
    category = "documents"
    parameters_schema = {
        "type": "object",
        "properties": {
            "documentId": {"type": "string", "description": "Id of the document"},
        },
        "required": ["documentId"],
    }

    def __init__(self, *args: Any, docs_base_url: str = "https://docs.googleapis.com/v1", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.docs_base_url = docs_base_url.rstrip("/")

    async def call(self, client: GoogleApiClient, arguments: Dict[str, Any]) -> Any:
        document = await client.get(f"{self.docs_base_url}/documents/{path_segment(arguments['documentId'])}")
        document = document or {}
        return DocumentContent(
            id=document.get("documentId", arguments["documentId"]),
            title=document.get("title", ""),
            content=extract_text(document.get("body") or {})
        ).model_dump()
