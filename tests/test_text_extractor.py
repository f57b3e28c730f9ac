import unittest

from app.pipeline.errors import ExtractionFailed, InvalidImage, ServiceUnavailable
from app.pipeline.resilience import CancellationToken, RetryPolicy
from app.pipeline.text_extractor import TextExtractor
from tests.fakes import PNG_BYTES, FakeVision, InMemoryObjectStore

POLICY = RetryPolicy(attempts=3)


class TextExtractorTests(unittest.IsolatedAsyncioTestCase):
    async def _store_with(self, content: bytes) -> tuple[InMemoryObjectStore, str]:
        store = InMemoryObjectStore()
        ref = await store.put(content, "image/png", "user-1", "page.png")
        return store, ref

    async def test_extracts_text_with_sniffed_mime(self):
        store, ref = await self._store_with(b"\xff\xd8\xff\xe0jpegdata")
        vision = FakeVision("Jane Doe")
        extractor = TextExtractor(store, vision, storage_policy=POLICY, ocr_policy=POLICY)

        self.assertEqual(await extractor.extract_text(ref, CancellationToken()), "Jane Doe")
        self.assertEqual(vision.calls, ["image/jpeg"])

    async def test_unknown_signature_falls_back_to_default_mime(self):
        store, ref = await self._store_with(b"\x00\x01\x02\x03")
        vision = FakeVision("text")
        extractor = TextExtractor(store, vision, storage_policy=POLICY, ocr_policy=POLICY, default_mime="image/webp")

        await extractor.extract_text(ref, CancellationToken())
        self.assertEqual(vision.calls, ["image/webp"])

    async def test_empty_text_is_a_valid_result(self):
        store, ref = await self._store_with(PNG_BYTES)
        extractor = TextExtractor(store, FakeVision(""), storage_policy=POLICY, ocr_policy=POLICY)
        self.assertEqual(await extractor.extract_text(ref, CancellationToken()), "")

    async def test_transient_fetch_errors_are_retried(self):
        store, ref = await self._store_with(PNG_BYTES)
        store._transient_failures = 2
        extractor = TextExtractor(store, FakeVision("ok"), storage_policy=POLICY, ocr_policy=POLICY)

        self.assertEqual(await extractor.extract_text(ref, CancellationToken()), "ok")
        self.assertEqual(store.get_calls, 3)

    async def test_missing_object_fails_extraction(self):
        extractor = TextExtractor(InMemoryObjectStore(), FakeVision(), storage_policy=POLICY, ocr_policy=POLICY)
        with self.assertRaises(ExtractionFailed):
            await extractor.extract_text("user-1/missing.png", CancellationToken())

    async def test_vision_errors_fail_extraction(self):
        for error in (InvalidImage(), ServiceUnavailable()):
            store, ref = await self._store_with(PNG_BYTES)
            vision = FakeVision(error=error)
            extractor = TextExtractor(store, vision, storage_policy=POLICY, ocr_policy=POLICY)
            with self.assertRaises(ExtractionFailed):
                await extractor.extract_text(ref, CancellationToken())


if __name__ == "__main__":
    unittest.main()
