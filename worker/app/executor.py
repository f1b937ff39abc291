import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Optional

import docker
from docker.errors import DockerException
from requests.exceptions import ConnectionError as RequestsConnectionError, ReadTimeout

from .config import settings
from .errors import ProcessError

logger = logging.getLogger(__name__)


@dataclass
class Command:
    args: list[str]
    stdin_path: Optional[str] = None
    stdout_path: Optional[str] = None

    @property
    def program(self) -> str:
        return self.args[0]

    def shell(self) -> str:
        line = " ".join(shlex.quote(arg) for arg in self.args)
        if self.stdin_path:
            line += f" < {shlex.quote(self.stdin_path)}"
        if self.stdout_path:
            line += f" > {shlex.quote(self.stdout_path)}"
        return line

    def __str__(self) -> str:
        return self.shell()


@dataclass
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


class CommandExecutor(ABC):
    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    @abstractmethod
    def execute(
        self, command: Command, stdin: Optional[bytes] = None, timeout: Optional[float] = None
    ) -> CommandResult:
        """Run ``command`` to completion and report its exit code and output."""


class SubprocessExecutor(CommandExecutor):
    def execute(self, command, stdin=None, timeout=None):
        timeout = timeout if timeout is not None else self.timeout
        logger.info("Running command: %s", command)
        with ExitStack() as stack:
            stdin_handle = None
            stdout_handle = subprocess.PIPE
            if command.stdin_path:
                if stdin is not None:
                    raise ValueError("stdin bytes and stdin_path are mutually exclusive")
                stdin_handle = stack.enter_context(open(command.stdin_path, "rb"))
            if command.stdout_path:
                stdout_handle = stack.enter_context(open(command.stdout_path, "wb"))
            try:
                completed = subprocess.run(
                    command.args,
                    input=stdin,
                    stdin=stdin_handle,
                    stdout=stdout_handle,
                    stderr=subprocess.PIPE,
                    timeout=timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                raise ProcessError(
                    f"{command.program} timed out after {timeout}s",
                    stderr=_decode(exc.stderr),
                ) from exc
            except OSError as exc:
                raise ProcessError(f"Failed to start {command.program}: {exc}") from exc
        return CommandResult(completed.returncode, _decode(completed.stdout), _decode(completed.stderr))


class DockerExecutor(CommandExecutor):
    """Runs commands in a throwaway container that shares the staging directory."""

    def __init__(
        self,
        client,
        image: str,
        mounts: Optional[list[str]] = None,
        network: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout=timeout)
        self.client = client
        self.image = image
        self.mounts = list(mounts or [])
        self.network = network

    def execute(self, command, stdin=None, timeout=None):
        if stdin is not None:
            raise ValueError("DockerExecutor reads stdin from command.stdin_path only")
        timeout = timeout if timeout is not None else self.timeout
        logger.info("Running command in %s: %s", self.image, command)
        try:
            container = self.client.containers.run(
                image=self.image,
                command=["sh", "-c", command.shell()],
                volumes={path: {"bind": path, "mode": "rw"} for path in self.mounts},
                network=self.network,
                detach=True,
            )
        except DockerException as exc:
            raise ProcessError(f"Failed to start {command.program}: {exc}") from exc
        try:
            try:
                status = container.wait(timeout=timeout)
            except (ReadTimeout, RequestsConnectionError) as exc:
                container.kill()
                raise ProcessError(f"{command.program} timed out after {timeout}s") from exc
            stdout = container.logs(stdout=True, stderr=False)
            stderr = container.logs(stdout=False, stderr=True)
        finally:
            try:
                container.remove(force=True)
            except DockerException as exc:
                logger.warning("Failed to remove container %s: %s", container.id, exc)
        return CommandResult(status.get("StatusCode", 1), _decode(stdout), _decode(stderr))


def get_executor() -> CommandExecutor:
    if settings.executor == "docker":
        return DockerExecutor(
            docker.DockerClient(base_url=settings.docker_base_url),
            image=settings.executor_image,
            mounts=[settings.staging_dir],
            network=settings.docker_network,
            timeout=settings.command_timeout,
        )
    return SubprocessExecutor(timeout=settings.command_timeout)
