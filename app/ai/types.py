from dataclasses import dataclass
from typing import Literal, Protocol


Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str


class LanguageModelClient(Protocol):
    async def complete(
        self, prompt: str, *, temperature: float, max_tokens: int
    ) -> str: ...


class VisionClient(Protocol):
    async def extract_text(self, image_bytes: bytes, mime_type: str) -> str: ...
