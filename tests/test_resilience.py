import asyncio
import unittest

from app.pipeline.errors import CallTimedOut, InvalidImage, PipelineCancelled, ServiceUnavailable
from app.pipeline.resilience import CancellationToken, RetryPolicy, call_with_policy

FAST = RetryPolicy(attempts=3, backoff_initial_s=0.0, backoff_max_s=0.0, timeout_s=0.0)


class CallWithPolicyTests(unittest.IsolatedAsyncioTestCase):
    async def test_transient_errors_are_retried_until_success(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ServiceUnavailable("try later")
            return "ok"

        result = await call_with_policy(flaky, policy=FAST, token=CancellationToken(), label="flaky")
        self.assertEqual(result, "ok")
        self.assertEqual(len(calls), 3)

    async def test_last_transient_error_is_reraised_after_attempts(self):
        calls = []

        async def down():
            calls.append(1)
            raise ServiceUnavailable("down")

        with self.assertRaises(ServiceUnavailable):
            await call_with_policy(down, policy=FAST, token=CancellationToken(), label="down")
        self.assertEqual(len(calls), 3)

    async def test_permanent_errors_are_not_retried(self):
        calls = []

        async def bad_image():
            calls.append(1)
            raise InvalidImage()

        with self.assertRaises(InvalidImage):
            await call_with_policy(bad_image, policy=FAST, token=CancellationToken(), label="ocr")
        self.assertEqual(len(calls), 1)

    async def test_per_attempt_timeout(self):
        async def slow():
            await asyncio.sleep(5)

        policy = RetryPolicy(attempts=2, timeout_s=0.01)
        with self.assertRaises(CallTimedOut):
            await call_with_policy(slow, policy=policy, token=CancellationToken(), label="slow")

    async def test_cancellation_interrupts_in_flight_call(self):
        token = CancellationToken()
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(30)

        task = asyncio.create_task(call_with_policy(hang, policy=FAST, token=token, label="hang"))
        await started.wait()
        token.cancel("stop")
        with self.assertRaises(PipelineCancelled):
            await task

    async def test_cancellation_interrupts_backoff_sleep(self):
        token = CancellationToken()
        policy = RetryPolicy(attempts=5, backoff_initial_s=30.0, backoff_max_s=30.0)
        calls = []

        async def down():
            calls.append(1)
            raise ServiceUnavailable()

        task = asyncio.create_task(call_with_policy(down, policy=policy, token=token, label="down"))
        await asyncio.sleep(0.05)
        token.cancel()
        with self.assertRaises(PipelineCancelled):
            await asyncio.wait_for(task, timeout=2)
        self.assertEqual(len(calls), 1)

    async def test_already_cancelled_token_never_calls(self):
        token = CancellationToken()
        token.cancel()
        calls = []

        async def op():
            calls.append(1)

        with self.assertRaises(PipelineCancelled):
            await call_with_policy(op, policy=FAST, token=token, label="op")
        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
