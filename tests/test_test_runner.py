import asyncio

import httpx
import pytest

from api_check.models.data_models import AppConfig, ServerConfig, TestConfig, TestResult
from api_check.services.config_store import ConfigStore
from api_check.services.metrics_store import MetricsStore
from api_check.services.test_runner import TestRunInProgressError, TestRunner, summarize
from tests.conftest import RecordingTransport


def always(status: int):
    return RecordingTransport(lambda request: httpx.Response(status, text="ok"))


class TestRunWithConfig:
    @pytest.mark.asyncio
    async def test_all_calls_succeed(self, config_store, metrics):
        transport = always(200)
        runner = TestRunner(config_store, metrics, client=transport.client())

        summary = await runner.run_with_config(
            TestConfig(num_calls=3, frequency_ms=0, target_url="http://target.test/ping")
        )

        assert summary.total_requests == 3
        assert summary.successful == 3
        assert summary.failed == 0
        assert [r.index for r in summary.results] == [1, 2, 3]
        assert metrics.count() == 3
        assert all(m.status_code == 200 and m.path == "http://target.test/ping" for m in metrics.get_all())
        assert not runner.is_running()

    @pytest.mark.asyncio
    async def test_run_uses_stored_test_config(self, config_store, metrics):
        transport = always(200)
        config_store.update_test(TestConfig(num_calls=2, frequency_ms=0, target_url="http://stored.test/"))
        runner = TestRunner(config_store, metrics, client=transport.client())

        summary = await runner.run()

        assert summary.total_requests == 2
        assert [str(r.url) for r in transport.requests] == ["http://stored.test/"] * 2

    @pytest.mark.asyncio
    async def test_non_2xx_status_is_a_failed_result(self, config_store, metrics):
        runner = TestRunner(config_store, metrics, client=always(404).client())

        summary = await runner.run_with_config(
            TestConfig(num_calls=2, frequency_ms=0, target_url="http://target.test/")
        )

        assert summary.failed == 2
        assert all(r.status_code == 404 and r.error is None for r in summary.results)
        assert metrics.get_summary().failed_requests == 2

    @pytest.mark.asyncio
    async def test_network_errors_are_recorded_without_status(self, config_store, metrics):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        runner = TestRunner(config_store, metrics, client=RecordingTransport(refuse).client())

        summary = await runner.run_with_config(
            TestConfig(num_calls=2, frequency_ms=0, target_url="http://target.test/")
        )

        assert summary.total_requests == 2
        assert summary.failed == 2
        assert summary.max_latency_ms == 0.0
        assert all(r.success is False and "connection refused" in r.error for r in summary.results)
        assert all(m.status_code is None and m.latency_ms == 0.0 for m in metrics.get_all())

    @pytest.mark.asyncio
    async def test_sends_method_headers_and_body(self, config_store, metrics):
        transport = always(201)
        runner = TestRunner(config_store, metrics, client=transport.client())

        await runner.run_with_config(TestConfig(
            num_calls=1,
            frequency_ms=0,
            method="post",
            target_url="http://target.test/items",
            body='{"a": 1}',
            headers=(("X-Dup", "1"), ("X-Dup", "2")),
        ))

        [sent] = transport.requests
        assert sent.method == "POST"
        assert sent.headers.get_list("x-dup") == ["1", "2"]
        assert sent.headers["content-type"] == "application/json"
        assert sent.content == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_invalid_method_falls_back_to_get(self, config_store, metrics):
        transport = always(200)
        runner = TestRunner(config_store, metrics, client=transport.client())

        await runner.run_with_config(TestConfig(num_calls=1, frequency_ms=0, method="???",
                                                target_url="http://target.test/"))

        assert transport.requests[0].method == "GET"

    @pytest.mark.asyncio
    async def test_defaults_to_own_server_address(self, metrics):
        store = ConfigStore()
        store.update(AppConfig(server=ServerConfig(host="127.0.0.1", port=4321)))
        transport = always(200)
        runner = TestRunner(store, metrics, client=transport.client())

        await runner.run_with_config(TestConfig(num_calls=1, frequency_ms=0))

        assert str(transport.requests[0].url) == "http://127.0.0.1:4321/"

    @pytest.mark.asyncio
    async def test_zero_calls(self, config_store, metrics):
        runner = TestRunner(config_store, metrics, client=always(200).client())

        summary = await runner.run_with_config(TestConfig(num_calls=0))

        assert summary.total_requests == 0
        assert summary.min_latency_ms == 0.0
        assert metrics.count() == 0

    @pytest.mark.asyncio
    async def test_non_ascii_header_is_sent_as_utf8(self, config_store, metrics):
        transport = always(200)
        runner = TestRunner(config_store, metrics, client=transport.client())

        summary = await runner.run_with_config(TestConfig(
            num_calls=2, frequency_ms=0, target_url="http://target.test/",
            headers=(("X-Name", "café☃"),),
        ))

        assert summary.successful == 2
        sent = transport.requests[0]
        assert [v for k, v in sent.headers.raw if k.lower() == b"x-name"] == ["café☃".encode("utf-8")]

    @pytest.mark.asyncio
    async def test_unencodable_header_fails_each_call_without_aborting(self, config_store, metrics):
        transport = always(200)
        runner = TestRunner(config_store, metrics, client=transport.client())

        summary = await runner.run_with_config(TestConfig(
            num_calls=2, frequency_ms=0, target_url="http://target.test/",
            headers=(("X-Bad", "\udcff"),),
        ))

        assert summary.total_requests == 2
        assert summary.failed == 2
        assert all(r.status_code is None and r.error for r in summary.results)
        assert transport.requests == []
        assert metrics.count() == 2
        assert not runner.is_running()


class TestRunExclusion:
    @pytest.mark.asyncio
    async def test_second_run_fails_while_first_is_active(self, config_store, metrics):
        runner = TestRunner(config_store, metrics, client=always(200).client())
        config = TestConfig(num_calls=3, frequency_ms=50, target_url="http://target.test/")

        task = runner.start(config)
        assert runner.is_running()

        with pytest.raises(TestRunInProgressError):
            await runner.run_with_config(config)
        with pytest.raises(TestRunInProgressError):
            runner.start(config)
        assert runner.is_running()

        summary = await task
        assert summary.total_requests == 3
        assert metrics.count() == 3
        assert not runner.is_running()

    @pytest.mark.asyncio
    async def test_runners_do_not_share_state(self, config_store):
        first = TestRunner(config_store, MetricsStore(10), client=always(200).client())
        second = TestRunner(config_store, MetricsStore(10), client=always(200).client())

        task = first.start(TestConfig(num_calls=2, frequency_ms=20, target_url="http://target.test/"))
        summary = await second.run_with_config(TestConfig(num_calls=1, frequency_ms=0,
                                                          target_url="http://target.test/"))
        await task

        assert summary.total_requests == 1

    @pytest.mark.asyncio
    async def test_runner_is_idle_after_unexpected_error(self, config_store, metrics):
        def explode(request):
            raise RuntimeError("boom")

        runner = TestRunner(config_store, metrics, client=RecordingTransport(explode).client())

        with pytest.raises(RuntimeError, match="boom"):
            await runner.run_with_config(TestConfig(num_calls=1, target_url="http://target.test/"))
        assert not runner.is_running()


    @pytest.mark.asyncio
    async def test_task_cancelled_before_first_step_releases_runner(self, config_store, metrics):
        runner = TestRunner(config_store, metrics, client=always(200).client())
        config = TestConfig(num_calls=1, frequency_ms=0, target_url="http://target.test/")

        task = runner.start(config)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)

        assert not runner.is_running()
        summary = await runner.run_with_config(config)
        assert summary.total_requests == 1

    @pytest.mark.asyncio
    async def test_stale_release_does_not_end_newer_run(self, config_store, metrics):
        runner = TestRunner(config_store, metrics, client=always(200).client())
        config = TestConfig(num_calls=2, frequency_ms=50, target_url="http://target.test/")

        first = await runner.start(config)
        task = runner.start(config)
        runner._release(1)  # late release from the finished first run

        assert runner.is_running()
        await task
        assert first.total_requests == 2
        assert not runner.is_running()


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_after_first_call_cuts_run_short(self, config_store, metrics):
        runners = []

        def respond_then_stop(request):
            runners[0].stop()
            return httpx.Response(200)

        runner = TestRunner(config_store, metrics, client=RecordingTransport(respond_then_stop).client())
        runners.append(runner)

        summary = await runner.run_with_config(
            TestConfig(num_calls=5, frequency_ms=100, target_url="http://target.test/")
        )

        assert summary.total_requests == 1
        assert summary.total_requests == metrics.count()
        assert not runner.is_running()

    @pytest.mark.asyncio
    async def test_stop_from_another_task(self, config_store, metrics):
        runner = TestRunner(config_store, metrics, client=always(200).client())

        task = runner.start(TestConfig(num_calls=5, frequency_ms=100, target_url="http://target.test/"))
        while metrics.count() < 1:
            await asyncio.sleep(0.005)
        runner.stop()
        summary = await task

        assert summary.total_requests < 5
        assert summary.total_requests == len(summary.results) == metrics.count()
        assert not runner.is_running()

    def test_stop_when_idle_is_a_no_op(self, config_store, metrics):
        runner = TestRunner(config_store, metrics, client=always(200).client())
        runner.stop()
        runner.stop()
        assert not runner.is_running()


class TestSummarize:
    def test_counts_attempted_calls_only(self):
        results = [
            TestResult(1, True, 200, 10.0),
            TestResult(2, False, 500, 30.0),
            TestResult(3, False, None, 0.0, "timeout"),
        ]
        summary = summarize(results, 123.0)

        assert summary.total_requests == 3
        assert summary.successful == 1
        assert summary.failed == 2
        assert summary.min_latency_ms == 0.0
        assert summary.max_latency_ms == 30.0
        assert summary.avg_latency_ms == pytest.approx(40.0 / 3)
        assert summary.total_duration_ms == 123.0
