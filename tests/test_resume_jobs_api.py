import asyncio
import os
import time
import unittest

# Keep API tests deterministic: no per-IP throttling between requests.
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")

from fastapi.testclient import TestClient

from app.core.rate_limit import limiter
from app.main import app
from app.services.job_runner import JobRunner
from tests.fakes import (
    JD_TEXT,
    PNG_BYTES,
    FakeLanguageModel,
    InMemoryKeyValueStore,
    build_orchestrator,
    make_pdf_bytes,
)

TERMINAL = {"succeeded", "failed", "cancelled"}


class ResumeJobsApiTests(unittest.TestCase):
    def setUp(self):
        limiter.enabled = False
        self.llm = FakeLanguageModel()
        orchestrator, self.objects, self.kv, _, _ = build_orchestrator(llm=self.llm)
        app.state.job_runner = JobRunner(orchestrator)
        self.client = TestClient(app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)
        del app.state.job_runner
        limiter.enabled = True

    def _submit(self, files, data=None):
        return self.client.post("/v1/resume-jobs", files=files, data=data or {"owner_id": "user-1"})

    def _wait_for_terminal(self, job_id: str, owner_id: str = "user-1") -> dict:
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            response = self.client.get(f"/v1/resume-jobs/{job_id}", params={"owner_id": owner_id})
            self.assertEqual(response.status_code, 200)
            body = response.json()
            if body["status"] in TERMINAL:
                return body
            time.sleep(0.02)
        self.fail("job did not finish in time")

    def test_health(self):
        response = self.client.get("/v1/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")

    def test_pdf_resume_runs_to_success(self):
        response = self._submit(
            files={"resume": ("resume.pdf", make_pdf_bytes(), "application/pdf")},
            data={"owner_id": "user-1", "company_name": "Acme", "job_title": "Backend Engineer"},
        )
        self.assertEqual(response.status_code, 202)
        job_id = response.json()["job_id"]
        self.assertEqual(len(response.json()["steps"]), 6)

        status = self._wait_for_terminal(job_id)
        self.assertEqual(status["status"], "succeeded")
        self.assertEqual({step["status"] for step in status["steps"]}, {"completed"})

        result = self.client.get(f"/v1/resume-jobs/{job_id}/result", params={"owner_id": "user-1"})
        self.assertEqual(result.status_code, 200)
        body = result.json()
        self.assertEqual(body["feedback"]["overallScore"], 72)
        self.assertEqual(body["company_name"], "Acme")
        self.assertIsNone(body["raw_analysis_text"])
        self.assertTrue(body["markdown_text"].startswith("---"))

    def test_jd_file_adds_step(self):
        response = self._submit(
            files={
                "resume": ("resume.png", PNG_BYTES, "image/png"),
                "jd_file": ("jd.txt", JD_TEXT.encode("utf-8"), "text/plain"),
            }
        )
        self.assertEqual(response.status_code, 202)
        steps = response.json()["steps"]
        self.assertEqual(steps[0]["name"], "Extracting JD information")
        self.assertEqual(len(steps), 7)

        status = self._wait_for_terminal(response.json()["job_id"])
        self.assertEqual(status["status"], "succeeded")

    def test_job_with_unsaved_status_is_served_from_memory(self):
        orchestrator, _, _, _, _ = build_orchestrator(kv_store=InMemoryKeyValueStore(fail_suffixes=(":status",)))
        app.state.job_runner = JobRunner(orchestrator)
        response = self._submit(files={"resume": ("resume.png", PNG_BYTES, "image/png")})
        job_id = response.json()["job_id"]

        status = self._wait_for_terminal(job_id)
        self.assertEqual(status["status"], "failed")
        self.assertEqual(status["failure_reason"], "persistence_failed")
        self.assertEqual(status["failed_stage"], "Saving results")

        result = self.client.get(f"/v1/resume-jobs/{job_id}/result", params={"owner_id": "user-1"})
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.json()["status"], "failed")
        self.assertEqual(result.json()["feedback"]["overallScore"], 72)

    def test_malformed_analysis_exposes_raw_text(self):
        self.llm.replies["feedback"] = "no json at all"
        response = self._submit(files={"resume": ("resume.png", PNG_BYTES, "image/png")})
        job_id = response.json()["job_id"]

        status = self._wait_for_terminal(job_id)
        self.assertEqual(status["failure_reason"], "malformed_analysis")
        self.assertEqual(status["failed_stage"], "Parsing analysis")

        body = self.client.get(f"/v1/resume-jobs/{job_id}/result", params={"owner_id": "user-1"}).json()
        self.assertEqual(body["raw_analysis_text"], "no json at all")
        self.assertEqual(body["feedback"], "")

    def test_rejects_unsupported_and_spoofed_uploads(self):
        response = self._submit(files={"resume": ("resume.docx", b"PK\x03\x04", "application/octet-stream")})
        self.assertEqual(response.status_code, 400)

        response = self._submit(files={"resume": ("resume.pdf", PNG_BYTES, "application/pdf")})
        self.assertEqual(response.status_code, 400)

        response = self._submit(files={"resume": ("resume.pdf", b"", "application/pdf")})
        self.assertEqual(response.status_code, 400)

    def test_unknown_job_and_foreign_owner_are_not_found(self):
        self.assertEqual(self.client.get("/v1/resume-jobs/missing").status_code, 404)
        self.assertEqual(self.client.get("/v1/resume-jobs/missing/result").status_code, 404)
        self.assertEqual(self.client.post("/v1/resume-jobs/missing/cancel").status_code, 404)

        response = self._submit(files={"resume": ("resume.png", PNG_BYTES, "image/png")})
        job_id = response.json()["job_id"]
        self._wait_for_terminal(job_id)
        response = self.client.get(f"/v1/resume-jobs/{job_id}", params={"owner_id": "intruder"})
        self.assertEqual(response.status_code, 404)

    def test_cancel_running_job(self):
        gate = asyncio.Event()
        self.llm.block_feedback = gate
        response = self._submit(files={"resume": ("resume.png", PNG_BYTES, "image/png")})
        job_id = response.json()["job_id"]

        cancel = self.client.post(f"/v1/resume-jobs/{job_id}/cancel", params={"owner_id": "user-1"})
        self.assertEqual(cancel.status_code, 200)
        self.assertTrue(cancel.json()["cancelled"])

        status = self._wait_for_terminal(job_id)
        self.assertEqual(status["status"], "cancelled")
        self.assertEqual(status["failure_reason"], "cancelled")


if __name__ == "__main__":
    unittest.main()
