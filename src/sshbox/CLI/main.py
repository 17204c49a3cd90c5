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
Command Line Interface for sshbox.
"""
import logging
import time
from pathlib import Path

import click

from ..errors import ExitCode, SshboxError, StageError
from ..BUILDERS.image_builder import ImageBuilder
from ..MANAGERS.access_configurator import AccessConfigurator
from ..MANAGERS.container_runner import ContainerRunner
from ..MANAGERS.health_checker import HealthChecker, Ready
from ..MANAGERS.key_manager import KeyManager
from ..MANAGERS.pipeline import Pipeline, PipelineRequest
from ..MODELS.container_handle import PortMapping, VolumeMount
from ..MODELS.image_spec import ImageSpec
from ..MODELS.ssh_config_entry import SSHConfigEntry
from ..PARSERS.build_definition_parser import BuildDefinitionError, BuildDefinitionParser
from ..REGISTRY.handle_store import HandleStore
from ..RUNTIME.docker_runtime import DockerRuntime
from ..settings import Settings
from ..UTILS.logging import setup_logging

logger = logging.getLogger(__name__)


class Components:
    """
    Lazily wires the managers from settings. Tests may pre-seed `runtime`,
    `key_runner` and `health_checker` in the click context object.
    """
    def __init__(self, settings: Settings, obj: dict):
        self.settings = settings
        self.obj = obj

    @property
    def runtime(self) -> DockerRuntime:
        if 'runtime' not in self.obj:
            self.obj['runtime'] = DockerRuntime()
        return self.obj['runtime']

    @property
    def key_manager(self) -> KeyManager:
        if 'key_runner' in self.obj:
            return KeyManager(runner=self.obj['key_runner'])
        return KeyManager()

    @property
    def image_builder(self) -> ImageBuilder:
        return ImageBuilder(self.runtime)

    @property
    def container_runner(self) -> ContainerRunner:
        if 'runner' not in self.obj:
            self.obj['runner'] = ContainerRunner(
                self.runtime,
                HandleStore(self.settings.index_file),
                name_prefix=self.settings.container_prefix,
            )
        return self.obj['runner']

    @property
    def access_configurator(self) -> AccessConfigurator:
        return AccessConfigurator(self.runtime, self.settings.ssh_config_path)

    @property
    def health_checker(self) -> HealthChecker:
        if 'health_checker' in self.obj:
            return self.obj['health_checker']
        return HealthChecker(
            host=self.settings.ssh_host,
            interval=self.settings.poll_interval,
            handshake_timeout=self.settings.handshake_timeout,
            sleep=self.obj.get('sleep', time.sleep),
        )


def _fail(ctx: click.Context, error: SshboxError):
    """
    Reports an error with its stage and exits with the stage's code.
    """
    if isinstance(error, StageError):
        code = error.exit_code
        message = str(error.cause)
    else:
        code = ExitCode.for_stage(error.stage)
        message = str(error)
    click.echo(f"Error [{error.stage}]: {message}", err=True)
    ctx.exit(int(code))


def _handle(ctx: click.Context, name: str):
    handle = ctx.obj['components'].container_runner.get(name)
    if handle is None:
        raise click.BadParameter(f"No tracked container named {name}", param_hint="NAME")
    return handle


def _parse_ports(values) -> list:
    try:
        return [PortMapping.parse(v) for v in values]
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--publish")


def _parse_mounts(values) -> list:
    try:
        return [VolumeMount.parse(v) for v in values]
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--volume")


def _load_spec(definition) -> ImageSpec:
    if not definition:
        return ImageSpec()
    try:
        return BuildDefinitionParser().parse(definition)
    except BuildDefinitionError as e:
        raise click.BadParameter(str(e), param_hint="DEFINITION")


@click.group()
@click.option('--state-dir', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Directory for the container index and logs')
@click.option('--ssh-config', type=click.Path(dir_okay=False, path_type=Path), default=None,
              help='SSH client config file to update')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, state_dir, ssh_config, verbose):
    """
    sshbox - SSH development containers.

    Generate keys, build an sshd image, start it and configure ssh access.
    """
    ctx.ensure_object(dict)
    overrides = {}
    if state_dir:
        overrides['state_dir'] = state_dir
    if ssh_config:
        overrides['ssh_config_path'] = ssh_config
    settings = Settings(**overrides)
    setup_logging("DEBUG" if verbose else settings.log_level,
                  None if ctx.resilient_parsing else settings.log_file)
    ctx.obj['settings'] = settings
    ctx.obj['components'] = Components(settings, ctx.obj)


@cli.command()
@click.argument('path', type=click.Path(path_type=Path))
@click.option('--passphrase', default=None, help='Key passphrase (empty by default)')
@click.option('--type', '-t', 'algorithm', type=click.Choice(['ed25519', 'rsa', 'ecdsa']), default='ed25519')
@click.option('--overwrite', is_flag=True, help='Replace an existing keypair')
@click.pass_context
def keygen(ctx, path, passphrase, algorithm, overwrite):
    """Generate an SSH keypair."""
    try:
        pair = ctx.obj['components'].key_manager.generate_key_pair(
            path, passphrase=passphrase, overwrite=overwrite, algorithm=algorithm)
    except SshboxError as e:
        _fail(ctx, e)
    click.echo(f"Private key: {pair.private_key_path}")
    click.echo(f"Public key:  {pair.public_key_path}")


@cli.command()
@click.argument('definition', type=click.Path(exists=True, dir_okay=False), required=False)
@click.option('--print-dockerfile', is_flag=True, help='Only render the Dockerfile')
@click.pass_context
def build(ctx, definition, print_dockerfile):
    """Build an sshd image from a build definition file."""
    spec = _load_spec(definition)
    builder = ctx.obj['components'].image_builder
    if print_dockerfile:
        click.echo(builder.render(spec), nl=False)
        return
    try:
        image_id = builder.build(spec)
    except SshboxError as e:
        _fail(ctx, e)
    click.echo(image_id)


@cli.command()
@click.argument('image')
@click.option('--publish', '-p', multiple=True, default=['2222:22'], help='hostPort:containerPort')
@click.option('--volume', '-V', multiple=True, help='hostPath:containerPath[:ro]')
@click.option('--name', default=None, help='Container name')
@click.option('--user', default='dev', help='Account inside the container')
@click.pass_context
def run(ctx, image, publish, volume, name, user):
    """Start a container from IMAGE."""
    ports = _parse_ports(publish)
    mounts = _parse_mounts(volume)
    try:
        handle = ctx.obj['components'].container_runner.start(image, ports, mounts, name=name, user=user)
    except SshboxError as e:
        _fail(ctx, e)
    click.echo(f"{handle.name} {handle.short_id} port {handle.host_port}")


@cli.command()
@click.argument('name')
@click.pass_context
def stop(ctx, name):
    """Stop a tracked container."""
    handle = _handle(ctx, name)
    try:
        ctx.obj['components'].container_runner.stop(handle)
    except SshboxError as e:
        _fail(ctx, e)
    click.echo(f"{handle.name} stopped.")


@cli.command()
@click.argument('name')
@click.option('--keep-config', is_flag=True, help='Keep the ssh config entry')
@click.pass_context
def rm(ctx, name, keep_config):
    """Remove a tracked container."""
    handle = _handle(ctx, name)
    components = ctx.obj['components']
    try:
        components.container_runner.remove(handle)
    except SshboxError as e:
        _fail(ctx, e)
    if not keep_config:
        components.access_configurator.remove_client_config(handle.name)
    click.echo(f"{handle.name} removed.")


@cli.command()
@click.pass_context
def ps(ctx):
    """List tracked containers."""
    runner = ctx.obj['components'].container_runner
    click.echo(f"{'NAME':24} {'ID':14} {'PORT':6} {'STATE':8}")
    click.echo("-" * 55)
    for handle in runner.list_handles():
        try:
            state = runner.inspect(handle).value
        except SshboxError as e:
            logger.debug("Cannot inspect %s: %s", handle.name, e)
            state = handle.state.value
        click.echo(f"{handle.name:24} {handle.short_id:14} {handle.host_port:<6} {state:8}")


@cli.command()
@click.argument('name')
@click.option('--key', 'key_file', type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True,
              help='Public key file')
@click.option('--user', default=None, help='Account to authorize (defaults to the container user)')
@click.pass_context
def authorize(ctx, name, key_file, user):
    """Install a public key in a running container."""
    handle = _handle(ctx, name)
    try:
        ctx.obj['components'].access_configurator.authorize(handle, key_file.read_text(), user=user)
    except SshboxError as e:
        _fail(ctx, e)
    click.echo(f"Key installed in {handle.name}.")


@cli.command()
@click.argument('alias')
@click.option('--port', type=int, required=True)
@click.option('--user', required=True)
@click.option('--host', 'hostname', default=None, help='Defaults to SSHBOX_SSH_HOST')
@click.option('--identity', default=None, help='Private key path')
@click.option('--remove', is_flag=True, help='Remove the entry instead')
@click.pass_context
def config(ctx, alias, port, user, hostname, identity, remove):
    """Write (or remove) an ssh client config entry."""
    components = ctx.obj['components']
    if remove:
        removed = components.access_configurator.remove_client_config(alias)
        click.echo(f"{alias} removed." if removed else f"{alias} not present.")
        return
    try:
        entry = SSHConfigEntry(alias=alias, hostname=hostname or ctx.obj['settings'].ssh_host,
                               port=port, user=user, identity_file=identity)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="ALIAS")
    components.access_configurator.write_client_config(entry)
    click.echo(f"Host {alias} written to {components.access_configurator.ssh_config_path}")


@cli.command()
@click.argument('name')
@click.option('--timeout', type=float, default=None, help='Seconds to wait')
@click.pass_context
def wait(ctx, name, timeout):
    """Wait until a container's SSH service answers."""
    handle = _handle(ctx, name)
    if timeout is None:
        timeout = ctx.obj['settings'].ready_timeout
    outcome = ctx.obj['components'].health_checker.wait_ready(handle, timeout)
    if isinstance(outcome, Ready):
        click.echo(f"{handle.name} ready ({outcome.server_version or 'ssh'}).")
        return
    click.echo(f"Error [health]: {handle.name} not ready after {outcome.elapsed:.1f}s: "
               f"{outcome.last_error or 'no response'}", err=True)
    ctx.exit(int(ExitCode.HEALTH))


@cli.command()
@click.argument('definition', type=click.Path(exists=True, dir_okay=False), required=False)
@click.option('--key', 'key_path', type=click.Path(path_type=Path), default=Path('~/.ssh/sshbox_ed25519'),
              help='Private key path, generated when missing')
@click.option('--passphrase', default=None)
@click.option('--publish', '-p', multiple=True, default=['2222:22'], help='hostPort:containerPort')
@click.option('--volume', '-V', multiple=True, help='hostPath:containerPath[:ro]')
@click.option('--name', default=None, help='Container name')
@click.option('--alias', default=None, help='ssh config Host alias (defaults to the container name)')
@click.option('--timeout', type=float, default=None, help='Seconds to wait for sshd')
@click.pass_context
def up(ctx, definition, key_path, passphrase, publish, volume, name, alias, timeout):
    """Run the full pipeline: keys, image, container, access, readiness."""
    settings = ctx.obj['settings']
    components = ctx.obj['components']
    request = PipelineRequest(
        key_path=key_path.expanduser(),
        passphrase=passphrase,
        spec=_load_spec(definition),
        ports=_parse_ports(publish),
        mounts=_parse_mounts(volume),
        name=name,
        alias=alias,
        ready_timeout=timeout if timeout is not None else settings.ready_timeout,
    )
    pipeline = Pipeline(
        components.key_manager,
        components.image_builder,
        components.container_runner,
        components.access_configurator,
        components.health_checker,
    )
    try:
        result = pipeline.run(request)
    except StageError as e:
        _fail(ctx, e)
    click.echo(f"Container {result.handle.name} is ready on port {result.handle.host_port}.")
    click.echo(f"Connect with: ssh {result.ssh_entry.alias}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
