"""
Unit tests for the update engine (stop, recreate, restart).

The FakeRuntimeClient records every runtime call, so ordering assertions
read straight from client.calls.
"""

import pytest

from tests.test_helpers import FakeRuntimeClient, create_container
from updates.container import POST_UPDATE_LABEL, PRE_UPDATE_LABEL
from updates.dependency_analyzer import sort_by_dependencies
from updates.errors import ContextCanceledError, HealthCheckError, RuntimeCallError
from updates.progress import Progress
from updates.types import CancelToken, UpdateParams
from updates.update_checker import UpdateChecker
from updates.update_executor import UpdateExecutor


async def run_engine(client, params=None, cancel=None):
    """Probe, sort and execute like a cycle does; returns (report, executor)."""
    params = params or UpdateParams()
    cancel = cancel or CancelToken()
    progress = Progress()
    containers = list(client.containers)

    probe = await UpdateChecker(client, params, progress, cancel).check_containers(containers)
    sort_by_dependencies(containers)
    executor = UpdateExecutor(client, params, progress, cancel)
    await executor.execute(containers, probe.stale_ids)
    return progress.report(), executor


def stale_client(*containers):
    client = FakeRuntimeClient(list(containers))
    for container in containers:
        client.mark_stale(container)
    return client


@pytest.mark.unit
class TestGroupedRestart:

    @pytest.mark.asyncio
    async def test_chain_stops_dependents_first_and_starts_dependencies_first(self):
        client = stale_client(
            create_container("a", links=["b"]),
            create_container("b", links=["c"]),
            create_container("c"),
        )

        report, _ = await run_engine(client)

        assert client.names_for("stop") == ["a", "b", "c"]
        assert client.names_for("start") == ["c", "b", "a"]
        assert [s.name for s in report.updated] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_all_stops_happen_before_any_start(self):
        client = stale_client(create_container("a"), create_container("b"))

        await run_engine(client)

        operations = [op for op, _ in client.calls if op in ("stop", "start")]
        assert operations == ["stop", "stop", "start", "start"]

    @pytest.mark.asyncio
    async def test_stop_failure_with_shared_image(self):
        a = create_container("a")
        b = create_container("b")
        c = create_container("c")
        client = stale_client(a, b, c)
        client.stop_errors[a.id] = [RuntimeCallError("stop container", "device busy")]

        report, executor = await run_engine(client)

        assert len(report.failed) == 1
        assert report.failed[0].name == "a"
        assert len(report.updated) == 2
        assert executor.cleanup_image_ids == {"sha256:old"}
        assert "a" not in client.names_for("start")

    @pytest.mark.asyncio
    async def test_stop_retries(self):
        a = create_container("a")
        client = stale_client(a)
        client.stop_errors[a.id] = [
            RuntimeCallError("stop container", "busy"),
            RuntimeCallError("stop container", "busy"),
        ]

        report, _ = await run_engine(client, UpdateParams(stop_retries=2))

        assert client.names_for("stop") == ["a", "a", "a"]
        assert [s.name for s in report.updated] == ["a"]

    @pytest.mark.asyncio
    async def test_stop_retries_exhausted(self):
        a = create_container("a")
        client = stale_client(a)
        client.stop_errors[a.id] = [RuntimeCallError("stop container", "busy")] * 3

        report, _ = await run_engine(client, UpdateParams(stop_retries=1))

        assert client.names_for("stop") == ["a", "a"]
        assert [s.name for s in report.failed] == ["a"]

    @pytest.mark.asyncio
    async def test_unhealthy_replacement_fails_without_rollback(self):
        a = create_container("a")
        client = stale_client(a)
        client.unhealthy.add("a")

        report, executor = await run_engine(client)

        assert [s.name for s in report.failed] == ["a"]
        assert isinstance(report.failed[0].error, HealthCheckError)
        assert executor.cleanup_image_ids == set()
        assert client.names_for("stop") == ["a"]

    @pytest.mark.asyncio
    async def test_start_failure_is_recorded(self):
        a = create_container("a")
        client = stale_client(a)
        client.start_errors[a.id] = RuntimeCallError("start container", "port in use")

        report, executor = await run_engine(client)

        assert [s.name for s in report.failed] == ["a"]
        assert executor.cleanup_image_ids == set()

    @pytest.mark.asyncio
    async def test_linked_container_is_restarted(self):
        a = create_container("a", links=["b"])
        b = create_container("b")
        client = FakeRuntimeClient([a, b])
        client.mark_stale(b)

        report, executor = await run_engine(client)

        assert client.names_for("stop") == ["a", "b"]
        assert client.names_for("start") == ["b", "a"]
        assert [s.name for s in report.updated] == ["b"]
        assert [s.name for s in report.fresh] == ["a"]
        assert executor.cleanup_image_ids == {"sha256:old"}

    @pytest.mark.asyncio
    async def test_no_restart_creates_without_starting(self):
        a = create_container("a", links=["b"])
        b = create_container("b")
        client = FakeRuntimeClient([a, b])
        client.mark_stale(b)

        report, _ = await run_engine(client, UpdateParams(no_restart=True))

        assert client.names_for("create") == ["b"]
        assert client.names_for("start") == []
        assert client.names_for("health") == []
        assert "a" not in client.names_for("stop")
        assert [s.name for s in report.updated] == ["b"]


@pytest.mark.unit
class TestRollingRestart:

    @pytest.mark.asyncio
    async def test_each_workload_is_replaced_before_the_next(self):
        client = stale_client(create_container("a"), create_container("b"))

        await run_engine(client, UpdateParams(rolling_restart=True))

        operations = [(op, name) for op, name in client.calls if op in ("stop", "start", "health")]
        assert operations == [
            ("stop", "b"), ("start", "b"), ("health", "b"),
            ("stop", "a"), ("start", "a"), ("health", "a"),
        ]


@pytest.mark.unit
class TestLifecycleHooks:

    @pytest.mark.asyncio
    async def test_pre_update_exit_75_skips_workload(self):
        x = create_container("x", labels={PRE_UPDATE_LABEL: "/PreUpdateReturn75.sh"})
        client = stale_client(x)
        client.exit_codes["/PreUpdateReturn75.sh"] = 75

        report, executor = await run_engine(client, UpdateParams(lifecycle_hooks=True))

        assert [s.name for s in report.skipped] == ["x"]
        assert report.updated == ()
        assert executor.cleanup_image_ids == set()
        assert client.names_for("stop") == []

    @pytest.mark.asyncio
    async def test_pre_update_failure_fails_workload(self):
        x = create_container("x", labels={PRE_UPDATE_LABEL: "pre.sh"})
        client = stale_client(x)
        client.exit_codes["pre.sh"] = 1

        report, _ = await run_engine(client, UpdateParams(lifecycle_hooks=True))

        assert [s.name for s in report.failed] == ["x"]
        assert client.names_for("stop") == []

    @pytest.mark.asyncio
    async def test_hooks_ignored_when_disabled(self):
        x = create_container("x", labels={PRE_UPDATE_LABEL: "pre.sh"})
        client = stale_client(x)
        client.exit_codes["pre.sh"] = 75

        report, _ = await run_engine(client)

        assert client.names_for("exec") == []
        assert [s.name for s in report.updated] == ["x"]

    @pytest.mark.asyncio
    async def test_post_update_failure_fails_workload(self):
        x = create_container("x", labels={POST_UPDATE_LABEL: "post.sh"})
        client = stale_client(x)
        client.exit_codes["post.sh"] = 2

        report, executor = await run_engine(client, UpdateParams(lifecycle_hooks=True))

        assert [s.name for s in report.failed] == ["x"]
        assert client.names_for("exec") == ["x"]
        assert executor.cleanup_image_ids == set()


@pytest.mark.unit
class TestSelfUpdate:

    @pytest.mark.asyncio
    async def test_updater_is_renamed_not_stopped(self):
        updater = create_container("watchtower", watchtower=True)
        client = stale_client(updater)

        report, executor = await run_engine(client)

        assert client.names_for("stop") == []
        assert client.names_for("rename") == ["watchtower"]
        assert client.names_for("start") == ["watchtower"]
        assert [s.name for s in report.updated] == ["watchtower"]
        assert executor.cleanup_image_ids == set()

    @pytest.mark.asyncio
    async def test_failed_start_restores_name(self):
        updater = create_container("watchtower", watchtower=True)
        client = stale_client(updater)
        client.start_errors[updater.id] = RuntimeCallError("start container", "boom")

        report, _ = await run_engine(client)

        assert client.names_for("rename") == ["watchtower", "watchtower"]
        assert [s.name for s in report.failed] == ["watchtower"]

    @pytest.mark.asyncio
    async def test_no_restart_skips_updater(self):
        updater = create_container("watchtower", watchtower=True)
        client = stale_client(updater)

        report, _ = await run_engine(client, UpdateParams(no_restart=True))

        assert client.names_for("rename") == []
        assert [s.name for s in report.skipped] == ["watchtower"]


@pytest.mark.unit
class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_fails_workload_in_flight(self):
        a = create_container("a")
        b = create_container("b")
        client = stale_client(a, b)
        cancel = CancelToken()
        client.hooks[("stop", "a")] = lambda: cancel.cancel()

        progress = Progress()
        containers = [a, b]
        probe = await UpdateChecker(client, UpdateParams(), progress, cancel).check_containers(containers)
        sort_by_dependencies(containers)
        executor = UpdateExecutor(client, UpdateParams(), progress, cancel)

        with pytest.raises(ContextCanceledError):
            await executor.execute(containers, probe.stale_ids)

        report = progress.report()
        assert [s.name for s in report.failed] == ["a"]
        assert [s.name for s in report.stale] == ["b"]
        assert client.names_for("start") == []

    @pytest.mark.asyncio
    async def test_cancel_during_start_phase_fails_removed_workloads(self):
        containers = [create_container(name) for name in ("a", "b", "c")]
        client = stale_client(*containers)
        cancel = CancelToken()
        for container in containers:
            client.hooks[("start", container.name)] = (
                lambda: len(client.names_for("start")) == 2 and cancel.cancel()
            )

        progress = Progress()
        probe = await UpdateChecker(client, UpdateParams(), progress, cancel).check_containers(containers)
        sort_by_dependencies(containers)
        executor = UpdateExecutor(client, UpdateParams(), progress, cancel)

        with pytest.raises(ContextCanceledError):
            await executor.execute(containers, probe.stale_ids)

        # Every container was taken down before the first start
        assert len(client.names_for("remove")) == 3
        starts = client.names_for("start")
        assert len(starts) == 2

        report = progress.report()
        updated = {s.name for s in report.updated}
        failed = {s.name for s in report.failed}
        assert updated == {starts[0]}
        assert failed == {"a", "b", "c"} - updated
        assert not updated & failed
        assert all(isinstance(s.error, ContextCanceledError) for s in report.failed)
        assert executor.cleanup_image_ids == {"sha256:old"}

    @pytest.mark.asyncio
    async def test_nothing_to_do(self):
        client = FakeRuntimeClient([create_container("a")])

        report, executor = await run_engine(client)

        assert client.names_for("stop") == []
        assert executor.cleanup_image_ids == set()
        assert [s.name for s in report.fresh] == ["a"]
