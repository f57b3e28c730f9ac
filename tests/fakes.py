from __future__ import annotations

import asyncio
import json

import fitz

from app.pipeline.errors import ObjectNotFound, StoreUnavailable
from app.pipeline.models import ResumeSubmission, SourceDocument
from app.pipeline.orchestrator import PipelineOrchestrator
from app.pipeline.resilience import RetryPolicies, RetryPolicy

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 48

FEEDBACK_JSON = {
    "overallScore": 72,
    "ATS": {"score": 70, "tips": [{"type": "improve", "tip": "Add keywords"}]},
    "toneAndStyle": {"score": 80, "tips": [], "problems": []},
    "content": {"score": 65, "tips": [], "problems": []},
    "structure": {"score": 75, "tips": [], "problems": []},
    "skills": {"score": 60, "tips": [], "problems": []},
    "mockInterview": {"questions": []},
}

FENCED_FEEDBACK = "```json\n" + json.dumps(FEEDBACK_JSON) + "\n```"

JD_TEXT = (
    "Senior Backend Engineer at Acme Corp. We are looking for an engineer with strong "
    "Python, PostgreSQL and cloud experience to build resilient data services."
)


def fast_policies(attempts: int = 3, timeout_s: float = 0.0) -> RetryPolicies:
    policy = RetryPolicy(attempts=attempts, backoff_initial_s=0.0, backoff_max_s=0.0, timeout_s=timeout_s)
    return RetryPolicies(convert=RetryPolicy(attempts=1), storage=policy, ocr=policy, llm=policy)


def make_pdf_bytes(text: str = "Jane Doe - Software Engineer", *, width: float = 595, height: float = 842) -> bytes:
    doc = fitz.open()
    page = doc.new_page(width=width, height=height)
    page.insert_text((72, 72), text, fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def pdf_submission(**overrides) -> ResumeSubmission:
    values = {
        "resume": SourceDocument(filename="resume.pdf", content=make_pdf_bytes(), content_type="application/pdf"),
        "company_name": "Acme",
        "job_title": "Backend Engineer",
        "job_description": "Build APIs",
        "owner_id": "user-1",
    }
    values.update(overrides)
    return ResumeSubmission(**values)


class InMemoryObjectStore:
    def __init__(self, *, fail_filenames: tuple[str, ...] = (), transient_failures: int = 0):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.put_calls: list[str] = []
        self.get_calls = 0
        self._fail_filenames = fail_filenames
        self._transient_failures = transient_failures

    async def put(self, content, content_type, owner_scope, filename=None):
        await asyncio.sleep(0)
        name = filename or "object"
        self.put_calls.append(name)
        if any(marker in name for marker in self._fail_filenames):
            raise StoreUnavailable(f"bucket offline for {name}")
        ref = f"{owner_scope}/{len(self.objects)}-{name}"
        self.objects[ref] = (content, content_type)
        return ref

    async def get(self, ref):
        self.get_calls += 1
        if self._transient_failures > 0:
            self._transient_failures -= 1
            raise StoreUnavailable("temporarily unavailable")
        if ref not in self.objects:
            raise ObjectNotFound(ref)
        return self.objects[ref][0]

    async def exists(self, ref):
        return ref in self.objects


class InMemoryKeyValueStore:
    def __init__(self, *, fail_suffixes: tuple[str, ...] = ()):
        self.data: dict[tuple[str, str], str] = {}
        self.writes: list[str] = []
        self._fail_suffixes = fail_suffixes

    async def set(self, key, value, owner=None):
        if any(key.endswith(suffix) for suffix in self._fail_suffixes):
            raise StoreUnavailable(f"kv offline for {key}")
        self.writes.append(key)
        self.data[(owner or "", key)] = value

    async def get(self, key, owner=None):
        return self.data.get((owner or "", key))

    def value(self, key, owner="user-1"):
        return self.data.get((owner, key))


class FakeVision:
    def __init__(self, text: str = "Jane Doe\nSoftware Engineer\nPython, SQL", *, error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls: list[str] = []

    async def extract_text(self, image_bytes, mime_type):
        self.calls.append(mime_type)
        if self.error is not None:
            raise self.error
        return self.text


class FakeLanguageModel:
    """Routes prompts to canned replies by prompt kind.

    A reply may be a string, an exception instance to raise, or an
    ``asyncio.Event`` the call blocks on until set.
    """

    def __init__(
        self,
        *,
        feedback=FENCED_FEEDBACK,
        markdown="```markdown\n---\nname: Jane Doe\n---\n\n## Experience\n```",
        jd=None,
        block_feedback: asyncio.Event | None = None,
    ):
        self.replies = {
            "feedback": feedback,
            "markdown": markdown,
            "jd": jd
            if jd is not None
            else json.dumps(
                {"jobTitle": "Senior Backend Engineer", "companyName": "Acme Corp", "jobDescription": JD_TEXT}
            ),
        }
        self.block_feedback = block_feedback
        self.calls: list[tuple[str, float, int]] = []
        self.cancelled: list[str] = []

    @staticmethod
    def kind_of(prompt: str) -> str:
        if "job description analyzer" in prompt:
            return "jd"
        if "Convert the following resume text into" in prompt:
            return "markdown"
        return "feedback"

    async def complete(self, prompt, *, temperature, max_tokens):
        kind = self.kind_of(prompt)
        self.calls.append((kind, temperature, max_tokens))
        reply = self.replies[kind]
        try:
            if kind == "feedback" and self.block_feedback is not None:
                await self.block_feedback.wait()
            if isinstance(reply, asyncio.Event):
                await reply.wait()
                return ""
            await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.cancelled.append(kind)
            raise
        if isinstance(reply, Exception):
            raise reply
        return reply


def build_orchestrator(
    *,
    object_store: InMemoryObjectStore | None = None,
    kv_store: InMemoryKeyValueStore | None = None,
    llm: FakeLanguageModel | None = None,
    vision: FakeVision | None = None,
    policies: RetryPolicies | None = None,
    allow_empty_text: bool = False,
):
    object_store = object_store or InMemoryObjectStore()
    kv_store = kv_store or InMemoryKeyValueStore()
    llm = llm or FakeLanguageModel()
    vision = vision or FakeVision()
    orchestrator = PipelineOrchestrator.build(
        object_store=object_store,
        kv_store=kv_store,
        llm=llm,
        vision=vision,
        policies=policies or fast_policies(),
        allow_empty_text=allow_empty_text,
    )
    return orchestrator, object_store, kv_store, llm, vision
