"""Tests for redash_bridge.runtime.poller - the submit/poll/fetch state machine."""
import asyncio
import time

import httpx
import pytest

from redash_bridge.core.errors import (
    MissingCredential,
    MissingResultReference,
    PollTimeout,
    UnexpectedUpstreamShape,
    UpstreamHTTPError,
    UpstreamJobFailed,
)
from redash_bridge.runtime.engine_client import EngineClient
from redash_bridge.runtime.poller import Deadline, Job, JobPoller, JobStatus, extract_job_id
from tests.conftest import BASE_URL, FakeClock, FakeRedash, make_poller


def run(poller, **overrides):
    kwargs = dict(
        query_id="35173",
        parameters={"org": "acme.com"},
        credential="secret",
        timeout_seconds=60,
        poll_interval_ms=2000,
        max_result_age_seconds=None,
    )
    kwargs.update(overrides)
    return poller.execute(**kwargs)


# -----------------------------------------------------------------------
# Submit
# -----------------------------------------------------------------------

class TestSubmit:
    @pytest.mark.asyncio
    async def test_cache_hit_returns_envelope_without_polling(self, clock):
        envelope = {"query_result": {"id": 5, "data": {"rows": [{"n": 1}]}}}
        fake = FakeRedash(submit=envelope)

        result = await run(make_poller(fake, clock))

        assert result == envelope
        assert len(fake.poll_calls) == 0
        assert len(fake.fetch_calls) == 0
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_cache_hit_with_empty_rows_still_short_circuits(self, clock):
        envelope = {"query_result": {"data": {"rows": []}}}
        fake = FakeRedash(submit=envelope)

        assert await run(make_poller(fake, clock)) == envelope
        assert fake.poll_calls == []

    @pytest.mark.asyncio
    async def test_submit_body_and_headers(self, clock):
        fake = FakeRedash(submit={"query_result": {"id": 1}})

        await run(make_poller(fake, clock), query_id="777", parameters={"org": "x.io"})

        request = fake.submit_calls[0]
        assert request.method == "POST"
        assert request.url.path == "/api/queries/777/results"
        assert request.headers["Authorization"] == "Key secret"
        assert fake.submit_body() == {"parameters": {"org": "x.io"}}

    @pytest.mark.asyncio
    async def test_max_age_sent_only_when_set(self, clock):
        fake = FakeRedash(submit={"query_result": {"id": 1}})
        poller = make_poller(fake, clock)

        await run(poller, max_result_age_seconds=300)
        await run(poller, max_result_age_seconds=0)
        await run(poller, max_result_age_seconds=None)

        assert fake.submit_body(0)["max_age"] == 300
        assert fake.submit_body(1)["max_age"] == 0
        assert "max_age" not in fake.submit_body(2)

    @pytest.mark.asyncio
    async def test_no_result_and_no_job_is_unexpected_shape(self, clock):
        fake = FakeRedash(submit={"message": "weird"})

        with pytest.raises(UnexpectedUpstreamShape) as exc:
            await run(make_poller(fake, clock))

        assert exc.value.payload == {"message": "weird"}
        assert '"message": "weird"' in str(exc.value)
        assert fake.poll_calls == []

    @pytest.mark.asyncio
    async def test_submit_http_error(self, clock):
        fake = FakeRedash(submit=httpx.Response(403, text="forbidden"))

        with pytest.raises(UpstreamHTTPError) as exc:
            await run(make_poller(fake, clock))

        assert exc.value.status_code == 403
        assert exc.value.body == "forbidden"
        assert len(fake.submit_calls) == 1

    @pytest.mark.asyncio
    async def test_missing_credential_makes_no_calls(self, clock):
        fake = FakeRedash(submit={"query_result": {"id": 1}})

        with pytest.raises(MissingCredential):
            await run(make_poller(fake, clock), credential=None)

        assert fake.requests == []


# -----------------------------------------------------------------------
# Poll loop
# -----------------------------------------------------------------------

class TestPollLoop:
    @pytest.mark.asyncio
    async def test_queued_processing_done_fetches_once(self, clock):
        fake = FakeRedash(
            submit={"job": {"id": "42", "status": 1}},
            polls=[
                {"job": {"status": 1}},
                {"job": {"status": 2}},
                {"job": {"status": 3, "query_result_id": "99"}},
            ],
            result={"rows": []},
        )

        result = await run(make_poller(fake, clock))

        assert result == {"rows": []}
        assert [r.url.path for r in fake.poll_calls] == ["/api/jobs/42"] * 3
        assert [r.url.path for r in fake.fetch_calls] == ["/api/query_results/99.json"]
        # Two waits between the three status checks
        assert clock.sleeps == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_fetched_body_returned_unmodified(self, clock):
        payload = {"query_result": {"id": 99, "data": {"rows": [{"org": "acme.com", "seats": 12}]}}}
        fake = FakeRedash(
            submit={"job": {"id": "1"}},
            polls=[{"job": {"status": 3, "query_result_id": 99}}],
            result=payload,
        )

        assert await run(make_poller(fake, clock)) == payload

    @pytest.mark.asyncio
    async def test_nested_result_reference(self, clock):
        fake = FakeRedash(
            submit={"job": {"id": "1"}},
            polls=[{"job": {"status": 3, "result": {"query_result_id": 7}}}],
            result={"ok": True},
        )

        await run(make_poller(fake, clock))
        assert fake.fetch_calls[0].url.path == "/api/query_results/7.json"

    @pytest.mark.asyncio
    async def test_done_without_result_reference(self, clock):
        fake = FakeRedash(submit={"job": {"id": "1"}}, polls=[{"job": {"status": 3}}])

        with pytest.raises(MissingResultReference) as exc:
            await run(make_poller(fake, clock))

        assert exc.value.job_id == "1"
        assert fake.fetch_calls == []

    @pytest.mark.asyncio
    async def test_failed_job_carries_error_text(self, clock):
        fake = FakeRedash(
            submit={"job": {"id": "1"}},
            polls=[{"job": {"status": 2}}, {"job": {"status": 4, "error": "X"}}],
        )

        with pytest.raises(UpstreamJobFailed) as exc:
            await run(make_poller(fake, clock))

        assert exc.value.message == "X"
        assert "X" in str(exc.value)
        assert fake.fetch_calls == []

    @pytest.mark.asyncio
    async def test_failed_job_without_error_text(self, clock):
        fake = FakeRedash(submit={"job": {"id": "1"}}, polls=[{"job": {"status": 4}}])

        with pytest.raises(UpstreamJobFailed) as exc:
            await run(make_poller(fake, clock))

        assert exc.value.message == "Unknown Redash job failure"

    @pytest.mark.asyncio
    async def test_unknown_status_keeps_polling(self, clock):
        fake = FakeRedash(
            submit={"job": {"id": "1"}},
            polls=[{"job": {}}, {"job": {"status": 9}}, {}, {"job": {"status": 3, "query_result_id": 5}}],
            result={"rows": []},
        )

        assert await run(make_poller(fake, clock)) == {"rows": []}
        assert len(fake.poll_calls) == 4

    @pytest.mark.asyncio
    async def test_poll_http_error_is_not_retried(self, clock):
        fake = FakeRedash(submit={"job": {"id": "1"}}, polls=[httpx.Response(500, text="boom")])

        with pytest.raises(UpstreamHTTPError) as exc:
            await run(make_poller(fake, clock))

        assert exc.value.status_code == 500
        assert len(fake.poll_calls) == 1

    @pytest.mark.asyncio
    async def test_fetch_http_error(self, clock):
        fake = FakeRedash(
            submit={"job": {"id": "1"}},
            polls=[{"job": {"status": 3, "query_result_id": 5}}],
            result=httpx.Response(404, text="gone"),
        )

        with pytest.raises(UpstreamHTTPError) as exc:
            await run(make_poller(fake, clock))

        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_job_id_from_alternative_shapes(self, clock):
        fake = FakeRedash(
            submit={"id": "top-level"},
            polls=[{"job": {"status": 3, "query_result_id": 5}}],
            result={},
        )

        await run(make_poller(fake, clock))
        assert fake.poll_calls[0].url.path == "/api/jobs/top-level"


# -----------------------------------------------------------------------
# Deadline
# -----------------------------------------------------------------------

class TestDeadline:
    @pytest.mark.asyncio
    async def test_times_out_with_elapsed_seconds(self, clock):
        fake = FakeRedash(submit={"job": {"id": "1"}}, polls=[{"job": {"status": 2}}])

        with pytest.raises(PollTimeout) as exc:
            await run(make_poller(fake, clock), timeout_seconds=10, poll_interval_ms=2000)

        assert exc.value.elapsed == pytest.approx(10)
        assert "after 10s" in str(exc.value)
        assert len(fake.poll_calls) == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout,interval_ms", [(10, 3000), (1, 5000), (7.5, 2000), (0.5, 100)])
    async def test_never_exceeds_budget_plus_interval(self, timeout, interval_ms):
        clock = FakeClock()
        start = clock.now()
        fake = FakeRedash(submit={"job": {"id": "1"}}, polls=[{"job": {"status": 1}}])

        with pytest.raises(PollTimeout):
            await run(make_poller(fake, clock), timeout_seconds=timeout, poll_interval_ms=interval_ms)

        assert clock.now() - start <= timeout + interval_ms / 1000

    @pytest.mark.asyncio
    async def test_zero_budget_times_out_without_upstream_calls(self, clock):
        fake = FakeRedash(submit={"job": {"id": "1"}}, polls=[{"job": {"status": 1}}])

        with pytest.raises(PollTimeout) as exc:
            await run(make_poller(fake, clock), timeout_seconds=0)

        assert exc.value.job_id is None
        assert fake.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("slow_path", ["/api/queries/", "/api/jobs/", "/api/query_results/"])
    async def test_slow_upstream_call_is_cut_off_at_deadline(self, slow_path):
        scripted = {
            "/api/queries/": {"job": {"id": "1"}},
            "/api/jobs/": {"job": {"status": 3, "query_result_id": 2}},
            "/api/query_results/": {"rows": []},
        }

        async def handler(request: httpx.Request) -> httpx.Response:
            prefix = next(p for p in scripted if request.url.path.startswith(p))
            if prefix == slow_path:
                await asyncio.sleep(1)
            return httpx.Response(200, json=scripted[prefix])

        poller = JobPoller(EngineClient(BASE_URL, transport=httpx.MockTransport(handler)))
        started = time.monotonic()

        with pytest.raises(PollTimeout):
            await run(poller, timeout_seconds=0.2, poll_interval_ms=50)

        assert time.monotonic() - started <= 0.35
        await poller.client.close()

    @pytest.mark.asyncio
    async def test_slow_polls_stop_at_deadline(self):
        polls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal polls
            if request.url.path.startswith("/api/queries/"):
                return httpx.Response(200, json={"job": {"id": "7"}})
            polls += 1
            await asyncio.sleep(0.08)
            return httpx.Response(200, json={"job": {"status": 2}})

        poller = JobPoller(EngineClient(BASE_URL, transport=httpx.MockTransport(handler)))
        started = time.monotonic()

        with pytest.raises(PollTimeout) as exc:
            await run(poller, timeout_seconds=0.3, poll_interval_ms=50)

        assert exc.value.job_id == "7"
        assert time.monotonic() - started <= 0.3 + 0.05 + 0.1
        assert polls <= 3
        await poller.client.close()

    @pytest.mark.asyncio
    async def test_nan_budget_is_rejected_before_any_call(self, clock):
        fake = FakeRedash(submit={"job": {"id": "1"}}, polls=[{"job": {"status": 1}}])

        with pytest.raises(ValueError):
            await run(make_poller(fake, clock), timeout_seconds=float("nan"))

        assert fake.requests == []

    def test_deadline_values(self, clock):
        deadline = Deadline.start(5, clock.now)
        assert deadline.expires_at == deadline.started_at + 5
        assert deadline.remaining() == 5
        assert not deadline.expired()

        clock.value += 6
        assert deadline.remaining() == 0
        assert deadline.elapsed() == 6
        assert deadline.expired()


# -----------------------------------------------------------------------
# Job parsing
# -----------------------------------------------------------------------

class TestJob:
    def test_from_poll_flat_reference(self):
        job = Job.from_poll("1", {"job": {"status": 3, "query_result_id": 11}})
        assert job.is_done
        assert job.result_id == 11

    def test_nested_reference_preferred(self):
        job = Job.from_poll("1", {"job": {"status": 3, "result": {"query_result_id": 1}, "query_result_id": 2}})
        assert job.result_id == 1

    def test_non_object_payload(self):
        job = Job.from_poll("1", None)
        assert job.status is None
        assert not job.is_done and not job.is_failed

    def test_status_codes(self):
        assert [s.value for s in JobStatus] == [1, 2, 3, 4]

    @pytest.mark.parametrize("envelope,expected", [
        ({"job": {"id": "a"}}, "a"),
        ({"job": {"job_id": "b"}}, "b"),
        ({"id": 12}, "12"),
        ({"job": {}}, None),
        ([], None),
    ])
    def test_extract_job_id(self, envelope, expected):
        assert extract_job_id(envelope) == expected
