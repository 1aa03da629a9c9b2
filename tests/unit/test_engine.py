"""Unit tests for the docker engine adapter."""

from unittest.mock import MagicMock, patch

import pytest
from docker.errors import APIError, DockerException, NotFound

from compose_exec.core.engine import (
    DockerEngine,
    create_engine,
    engine_error,
    is_already_exists,
    is_not_found,
    raw_socket,
)
from compose_exec.models import EngineError


@pytest.fixture
def api():
    return MagicMock()


@pytest.fixture
def engine(api):
    return DockerEngine(api)


class TestErrorClassification:
    """Test engine error helpers."""

    def test_conflict(self):
        err = APIError("Conflict", response=MagicMock(status_code=409), explanation="in use")
        assert is_already_exists(err)

    def test_already_exists_message(self):
        assert is_already_exists(Exception("volume data already exists"))
        assert not is_already_exists(Exception("permission denied"))

    def test_not_found(self):
        assert is_not_found(NotFound("gone"))
        assert is_not_found(Exception("No such container: abc"))
        assert not is_not_found(Exception("conflict"))

    def test_engine_error_wraps(self):
        err = engine_error("start container 'x'", APIError("boom"))
        assert isinstance(err, EngineError)
        assert str(err) == "compose: start container 'x': boom"


class TestDockerEngine:
    """Test DockerEngine against a mocked APIClient."""

    def test_image_exists(self, engine, api):
        assert engine.image_exists("alpine")
        api.inspect_image.side_effect = NotFound("no such image")
        assert not engine.image_exists("alpine")

    def test_pull_drains_progress(self, engine, api):
        api.pull.return_value = iter([{"status": "Pulling"}, {"status": "Done"}])
        engine.pull_image("alpine:3.20")
        api.pull.assert_called_once_with("alpine:3.20", stream=True, decode=True)

    def test_pull_in_band_error(self, engine, api):
        api.pull.return_value = iter([{"status": "Pulling"}, {"error": "manifest unknown"}])
        with pytest.raises(APIError, match="manifest unknown"):
            engine.pull_image("nope:latest")

    def test_create_returns_id(self, engine, api):
        api.create_container_from_config.return_value = {"Id": "abc123", "Warnings": ["low memory"]}
        assert engine.create_container({"Image": "alpine"}, "c1") == "abc123"
        api.create_container_from_config.assert_called_once_with({"Image": "alpine"}, "c1")

    def test_attach_clears_timeout(self, engine, api):
        sock = MagicMock()
        api.attach_socket.return_value = sock

        assert engine.attach("abc", stdin=True) is sock

        params = api.attach_socket.call_args.kwargs["params"]
        assert params == {"stdin": 1, "stdout": 1, "stderr": 1, "stream": 1}
        sock._sock.settimeout.assert_called_once_with(None)

    def test_wait_not_running(self, engine, api):
        api.wait.return_value = {"StatusCode": 0}
        assert engine.wait("abc") == {"StatusCode": 0}
        api.wait.assert_called_once_with("abc", condition="not-running")

    def test_stop_rounds_timeout_up(self, engine, api):
        engine.stop("abc", 0.2)
        api.stop.assert_called_once_with("abc", timeout=1)

    def test_remove_forces(self, engine, api):
        engine.remove("abc")
        api.remove_container.assert_called_once_with("abc", force=True)

    def test_create_network(self, engine, api):
        api.create_network.return_value = {"Id": "net1"}
        assert engine.create_network("p_default", {"a": "b"}) == "net1"
        api.create_network.assert_called_once_with("p_default", driver=None, options=None, labels={"a": "b"})

    def test_raw_socket(self):
        wrapper = MagicMock()
        assert raw_socket(wrapper) is wrapper._sock
        assert raw_socket(object) is object


class TestCreateEngine:
    """Test create_engine()."""

    def test_explicit_host(self):
        with patch("compose_exec.core.engine.docker.APIClient") as client_cls:
            engine = create_engine("tcp://engine:2375")
        assert isinstance(engine, DockerEngine)
        assert client_cls.call_args.kwargs["base_url"] == "tcp://engine:2375"
        assert client_cls.call_args.kwargs["version"] == "auto"

    def test_connection_failure(self):
        with patch(
            "compose_exec.core.engine.docker.APIClient",
            side_effect=DockerException("Error while fetching server API version"),
        ):
            with pytest.raises(EngineError, match="connect to engine"):
                create_engine("unix:///nonexistent.sock")
