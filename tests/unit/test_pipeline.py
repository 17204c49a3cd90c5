# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for the end-to-end pipeline.
"""
import pytest

from sshbox.BUILDERS.image_builder import ImageBuilder
from sshbox.errors import ExitCode, StageError
from sshbox.MANAGERS.access_configurator import AccessConfigurator
from sshbox.MANAGERS.container_runner import ContainerRunner
from sshbox.MANAGERS.health_checker import HealthChecker
from sshbox.MANAGERS.key_manager import KeyManager
from sshbox.MANAGERS.pipeline import Pipeline, PipelineRequest
from sshbox.MODELS.container_handle import ContainerState, PortMapping
from sshbox.MODELS.image_spec import ImageSpec


def _pipeline(runtime, keygen, tmp_path, probe_ok=True):
    checker = HealthChecker(interval=0.01, sleep=lambda s: None)
    checker.probe = lambda host, port, timeout: (probe_ok, "SSH-2.0-OpenSSH_8.9" if probe_ok else "refused")
    return Pipeline(
        KeyManager(runner=keygen),
        ImageBuilder(runtime),
        ContainerRunner(runtime),
        AccessConfigurator(runtime, tmp_path / "ssh_config"),
        checker,
    )


def _request(tmp_path, **kwargs):
    kwargs.setdefault("ports", [PortMapping(host_port=2222, container_port=22)])
    return PipelineRequest(
        key_path=tmp_path / "k",
        spec=ImageSpec(base_image="ubuntu:22.04", packages=["openssh-server"], user_account="dev"),
        **kwargs,
    )


class TestPipeline:
    """Tests for Pipeline.run."""

    def test_full_scenario(self, runtime, keygen, tmp_path):
        result = _pipeline(runtime, keygen, tmp_path).run(_request(tmp_path, name="box", ready_timeout=30))

        assert result.key_pair.private_key_path == tmp_path / "k"
        assert result.image_id.startswith("sha256:")
        assert result.handle.state == ContainerState.RUNNING
        assert result.handle.host_port == 2222
        keys = runtime.containers[result.handle.id]["authorized_keys"]["dev"]
        assert keys == [result.key_pair.public_key()]
        config = (tmp_path / "ssh_config").read_text()
        assert "Host box\n" in config
        assert f"IdentityFile {tmp_path / 'k'}" in config
        assert result.attempts == 1

    def test_build_failure_names_stage(self, runtime, keygen, tmp_path):
        from docker.errors import APIError
        runtime.fail_build = APIError("daemon gone")
        with pytest.raises(StageError) as info:
            _pipeline(runtime, keygen, tmp_path).run(_request(tmp_path))
        assert info.value.stage == "build"
        assert info.value.exit_code == ExitCode.BUILD
        # keys stay in place
        assert (tmp_path / "k").exists()

    def test_port_collision_names_run_stage(self, runtime, keygen, tmp_path):
        pipeline = _pipeline(runtime, keygen, tmp_path)
        pipeline.run(_request(tmp_path, name="first"))
        with pytest.raises(StageError) as info:
            pipeline.run(_request(tmp_path, name="second"))
        assert info.value.exit_code == ExitCode.RUN

    def test_timeout_names_health_stage_and_keeps_container(self, runtime, keygen, tmp_path):
        with pytest.raises(StageError) as info:
            _pipeline(runtime, keygen, tmp_path, probe_ok=False).run(_request(tmp_path, ready_timeout=0.05))
        assert info.value.exit_code == ExitCode.HEALTH
        assert len(runtime.containers) == 1
        assert not (tmp_path / "ssh_config").exists()

    def test_empty_ports_names_run_stage(self, runtime, keygen, tmp_path):
        with pytest.raises(StageError) as info:
            _pipeline(runtime, keygen, tmp_path).run(_request(tmp_path, ports=[]))
        assert info.value.exit_code == ExitCode.RUN
        assert not runtime.containers
