import unittest

from app.pipeline.errors import UploadFailed
from app.pipeline.models import SourceDocument
from app.pipeline.resilience import CancellationToken, RetryPolicy
from app.pipeline.uploads import UploadCoordinator
from tests.fakes import PNG_BYTES, InMemoryObjectStore

POLICY = RetryPolicy(attempts=2)
ORIGINAL = SourceDocument(filename="resume.pdf", content=b"%PDF-1.7 original", content_type="application/pdf")


class UploadCoordinatorTests(unittest.IsolatedAsyncioTestCase):
    async def test_both_uploads_return_typed_refs(self):
        store = InMemoryObjectStore()
        result = await UploadCoordinator(store, policy=POLICY).store(ORIGINAL, PNG_BYTES, "user-1", CancellationToken())

        self.assertEqual(store.objects[result.original_ref], (ORIGINAL.content, "application/pdf"))
        self.assertEqual(store.objects[result.converted_ref], (PNG_BYTES, "image/png"))
        self.assertTrue(result.converted_ref.endswith("resume-page1.png"))

    async def test_one_failing_branch_fails_the_stage_but_other_bytes_stay_written(self):
        store = InMemoryObjectStore(fail_filenames=("page1",))

        with self.assertRaises(UploadFailed) as ctx:
            await UploadCoordinator(store, policy=POLICY).store(ORIGINAL, PNG_BYTES, "user-1", CancellationToken())

        self.assertEqual(ctx.exception.which, "converted")
        self.assertEqual(ctx.exception.code, "upload_failed")
        written = [content for content, _ in store.objects.values()]
        self.assertEqual(written, [ORIGINAL.content])

    async def test_original_failure_is_reported(self):
        store = InMemoryObjectStore(fail_filenames=("resume.pdf",))
        with self.assertRaises(UploadFailed) as ctx:
            await UploadCoordinator(store, policy=POLICY).store(ORIGINAL, PNG_BYTES, "user-1", CancellationToken())
        self.assertEqual(ctx.exception.which, "original")
        self.assertEqual([content for content, _ in store.objects.values()], [PNG_BYTES])

    async def test_both_failing(self):
        store = InMemoryObjectStore(fail_filenames=("resume",))
        with self.assertRaises(UploadFailed) as ctx:
            await UploadCoordinator(store, policy=POLICY).store(ORIGINAL, PNG_BYTES, "user-1", CancellationToken())
        self.assertEqual(ctx.exception.which, "both")
        self.assertEqual(store.objects, {})
        # Each branch is retried under the storage policy.
        self.assertEqual(len(store.put_calls), 4)


if __name__ == "__main__":
    unittest.main()
