"""Docker Compose implementation of the instance runtime port."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Awaitable, Callable, Mapping, Sequence

from .errors import InstanceRuntimeError
from .interfaces import InstanceRuntimePort, RuntimeInstance

logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str], Mapping[str, str] | None], Awaitable[str]]


async def runtime_run_command(arguments: Sequence[str], extra_env: Mapping[str, str] | None = None) -> str:
    """Run one CLI command and return its stdout.

    Args:
        arguments: Program and arguments.
        extra_env: Environment variables added to the current environment.

    Returns:
        str: Decoded stdout.

    Raises:
        InstanceRuntimeError: Raised when the program is missing or exits non-zero.
    """

    environment = {**os.environ, **(extra_env or {})}
    try:
        process = await asyncio.create_subprocess_exec(
            *arguments,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=environment,
        )
    except FileNotFoundError as error:
        raise InstanceRuntimeError(f"command not found: {arguments[0]}") from error
    except OSError as error:
        raise InstanceRuntimeError(f"command could not be started: {arguments[0]}: {error}") from error

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise InstanceRuntimeError(
            f"command failed ({process.returncode}): {' '.join(arguments[:4])}: {stderr.decode(errors='replace').strip()}"
        )
    return stdout.decode(errors="replace")


def runtime_parse_created(value: str) -> datetime:
    """Parse a Docker RFC 3339 timestamp with nanosecond precision.

    Args:
        value: Timestamp such as `2024-01-15T08:30:00.123456789Z`.

    Returns:
        datetime: Timezone-aware timestamp truncated to microseconds.

    Raises:
        ValueError: Raised when the value is not a valid timestamp.
    """

    normalized_value = value.strip().replace("Z", "+00:00")
    if "." in normalized_value:
        whole, fraction_and_zone = normalized_value.split(".", 1)
        digits = ""
        for character in fraction_and_zone:
            if not character.isdigit():
                break
            digits += character
        zone = fraction_and_zone[len(digits):]
        normalized_value = f"{whole}.{digits[:6].ljust(6, '0')}{zone}"
    parsed = datetime.fromisoformat(normalized_value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DockerComposeRuntime(InstanceRuntimePort):
    """Runs service instances as replicas of one Docker Compose service."""

    def __init__(
        self,
        compose_file: str,
        service_name: str,
        image_name: str,
        command_runner: CommandRunner | None = None,
    ):
        """Initialize the Compose runtime.

        Args:
            compose_file: Path to the compose file.
            service_name: Compose service being rolled.
            image_name: Image repository, exported as `IMAGE_NAME` to compose.
            command_runner: Optional command executor, used by tests.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when config values are blank.
        """

        if not compose_file.strip():
            raise ValueError("compose_file must not be blank")
        if not service_name.strip():
            raise ValueError("service_name must not be blank")
        if not image_name.strip():
            raise ValueError("image_name must not be blank")

        self._compose_file = compose_file.strip()
        self._service_name = service_name.strip()
        self._image_name = image_name.strip()
        self._run = command_runner or runtime_run_command

    def runtime_label(self) -> str:
        return f"compose:{self._compose_file}#{self._service_name}"

    async def runtime_list_instances(self) -> list[RuntimeInstance]:
        """Return running replicas of the compose service.

        Returns:
            list[RuntimeInstance]: Running containers with their creation time.

        Raises:
            InstanceRuntimeError: Raised when docker commands fail or output is malformed.
        """

        container_ids = await self._runtime_service_container_ids()
        if not container_ids:
            return []

        inspect_output = await self._run(
            ["docker", "inspect", "--format", "{{.Id}} {{.Created}} {{.State.Status}}", *container_ids],
            None,
        )
        instances: list[RuntimeInstance] = []
        for line in inspect_output.splitlines():
            parts = line.split()
            if not parts:
                continue
            if len(parts) != 3:
                raise InstanceRuntimeError(f"unexpected docker inspect output: {line!r}")
            container_id, created_value, state = parts
            if state != "running":
                continue
            try:
                created_at = runtime_parse_created(created_value)
            except ValueError as error:
                raise InstanceRuntimeError(f"invalid container creation time {created_value!r}") from error
            instances.append(RuntimeInstance(instance_id=container_id[:12], created_at=created_at))
        return instances

    async def runtime_start_instance(self, image_tag: str) -> RuntimeInstance:
        """Scale the service up by one and return the container that appeared.

        Args:
            image_tag: Image tag, exported as `IMAGE_TAG` to compose.

        Returns:
            RuntimeInstance: Newly started container.

        Raises:
            InstanceRuntimeError: Raised when scaling fails or the new container cannot be isolated.
        """

        before = {instance.instance_id for instance in await self.runtime_list_instances()}
        target_scale = len(before) + 1
        logger.info("Scaling %s to %s (adding a new replica)", self._service_name, target_scale)
        await self._run(
            [
                "docker",
                "compose",
                "-f",
                self._compose_file,
                "up",
                "-d",
                "--no-recreate",
                "--scale",
                f"{self._service_name}={target_scale}",
                self._service_name,
            ],
            {"IMAGE_NAME": self._image_name, "IMAGE_TAG": image_tag},
        )

        running_instances = await self.runtime_list_instances()
        new_instances = [instance for instance in running_instances if instance.instance_id not in before]
        if not new_instances:
            raise InstanceRuntimeError(f"could not isolate new container after scaling {self._service_name}")
        return max(new_instances, key=lambda instance: (instance.created_at, instance.instance_id))

    async def runtime_stop_instance(self, instance_id: str, grace_seconds: int) -> None:
        """Stop a container with a grace period, then remove it.

        Args:
            instance_id: Container id.
            grace_seconds: Seconds before docker sends SIGKILL.

        Returns:
            None: Container is stopped and removed as side effect.

        Raises:
            InstanceRuntimeError: Raised when the stop command fails.
        """

        await self._run(["docker", "stop", "--time", str(grace_seconds), instance_id], None)
        try:
            await self._run(["docker", "rm", instance_id], None)
        except InstanceRuntimeError as error:
            logger.warning("Stopped container %s could not be removed: %s", instance_id, error)

    async def runtime_instance_address(self, instance_id: str) -> str | None:
        """Return the first network IP address of a container, if any.

        Args:
            instance_id: Container id.

        Returns:
            str | None: IP address, or None when the container has none.

        Raises:
            InstanceRuntimeError: Raised when docker inspect fails.
        """

        output = await self._run(
            ["docker", "inspect", "--format", "{{range .NetworkSettings.Networks}}{{.IPAddress}} {{end}}", instance_id],
            None,
        )
        addresses = output.split()
        return addresses[0] if addresses else None

    async def _runtime_service_container_ids(self) -> list[str]:
        output = await self._run(["docker", "compose", "-f", self._compose_file, "ps", "-q", self._service_name], None)
        return [line.strip() for line in output.splitlines() if line.strip()]
