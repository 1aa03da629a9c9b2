"""Unit tests for project teardown."""

from unittest.mock import patch

import pytest
from docker.errors import APIError
from fakes import FakeEngine, sleep_until_stopped

from compose_exec.models import DownError, EngineError, UsageError
from compose_exec.services.container import Command, down


class TestDown:
    """Test down()."""

    @pytest.mark.asyncio
    async def test_empty_project_name(self):
        engine = FakeEngine()
        with pytest.raises(UsageError):
            await down("  ", engine=engine)
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_removes_project_containers_and_networks(self, service, project):
        engine = FakeEngine(sleep_until_stopped)
        cmd = Command(service, project, engine=engine)
        await cmd.start()
        engine.create_network("other_default", {"com.docker.compose.project": "other"})

        await down("myproj", engine=engine)

        assert engine.live_containers() == []
        assert list(engine.networks) == ["other_default"]
        assert engine.calls.index("remove") < engine.calls.index("remove_network")

    @pytest.mark.asyncio
    async def test_repeated_calls_are_safe(self, service, project):
        engine = FakeEngine(sleep_until_stopped)
        await Command(service, project, engine=engine).start()

        await down("myproj", engine=engine)
        await down("myproj", engine=engine)

        assert engine.live_containers() == []

    @pytest.mark.asyncio
    async def test_list_failure(self):
        engine = FakeEngine()

        def fail(filters):
            raise APIError("engine down")

        engine.list_containers = fail
        with pytest.raises(EngineError, match="list containers"):
            await down("myproj", engine=engine)

    @pytest.mark.asyncio
    async def test_removal_failures_collected(self, service, project):
        engine = FakeEngine(sleep_until_stopped)
        cmd = Command(service, project, engine=engine)
        await cmd.start()
        engine.remove_error = APIError("device or resource busy")

        def busy(network_id):
            raise APIError("network has active endpoints")

        engine.remove_network = busy

        with pytest.raises(DownError) as exc_info:
            await down("myproj", engine=engine)

        codes = [d.code for d in exc_info.value.details]
        assert codes == ["remove_failed", "remove_failed"]
        assert exc_info.value.details[0].resource.startswith("container compose-exec-app-")
        assert exc_info.value.details[1].resource == "network myproj_default"

        engine.remove_error = None
        engine.remove(cmd.container_id)

    @pytest.mark.asyncio
    async def test_owned_engine_closed(self):
        engine = FakeEngine()
        with patch(
            "compose_exec.services.container.teardown.create_engine", return_value=engine
        ):
            await down("myproj")
        assert engine.closed
