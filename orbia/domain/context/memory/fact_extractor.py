from abc import ABC, abstractmethod
from typing import Dict, List
import structlog
from langchain_core.exceptions import OutputParserException
from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.prompts import ChatPromptTemplate

logger = structlog.get_logger(__name__)


FACT_EXTRACTION_PROMPT = """You extract durable personal facts about the user from a conversation.
Return JSON of the form {{"facts": ["...", "..."]}}.
Each fact is one short self-contained sentence about the user's preferences, plans,
relationships, work or circumstances. Ignore greetings, questions without personal
content and anything the assistant said that the user did not confirm.
Return {{"facts": []}} when nothing is worth remembering."""


class FactExtractor(ABC):
    """Derives memory contents from conversation messages"""

    @abstractmethod
    async def extract(self, messages: List[Dict[str, str]]) -> List[str]:
        pass


class UserMessageExtractor(FactExtractor):
    """Stores each non-empty user message verbatim"""

    async def extract(self, messages: List[Dict[str, str]]) -> List[str]:
        return [
            m["content"].strip() for m in messages
            if m.get("role") == "user" and isinstance(m.get("content"), str) and m["content"].strip()
        ]


class LLMFactExtractor(FactExtractor):
    """Asks a chat model for a JSON list of facts"""

    def __init__(self, llm: BaseChatModel):
        self.prompt = ChatPromptTemplate.from_messages([
            ("system", FACT_EXTRACTION_PROMPT),
            ("human", "{conversation}"),
        ])
        self.chain = self.prompt | llm | JsonOutputParser()
        self.fallback = UserMessageExtractor()

    async def extract(self, messages: List[Dict[str, str]]) -> List[str]:
        if not messages:
            return []

        conversation = "\n".join(
            f"{m.get('role', 'user')}: {m['content']}" for m in messages if isinstance(m.get("content"), str)
        )
        try:
            parsed = await self.chain.ainvoke({"conversation": conversation})
        except OutputParserException as e:
            logger.warning("Fact extraction returned invalid JSON, storing user messages", error=str(e))
            return await self.fallback.extract(messages)

        facts = parsed.get("facts", []) if isinstance(parsed, dict) else []
        return [f.strip() for f in facts if isinstance(f, str) and f.strip()]
