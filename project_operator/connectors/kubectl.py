"""
Kubectl connector for managing Kubernetes resources.

All cluster access goes through the kubectl binary. Inside a pod the mounted
service account is picked up automatically; outside a cluster the usual
KUBECONFIG resolution applies.
"""

import asyncio
import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from project_operator.core.errors import PlatformApiError

logger = logging.getLogger(__name__)


class KubectlConnector:
    """Connector for interacting with Kubernetes clusters using kubectl."""

    def __init__(self, timeout: float = 60.0, env: dict[str, str] | None = None):
        """
        Args:
            timeout: Upper bound in seconds for a single kubectl invocation
            env: Extra environment variables for kubectl (e.g. KUBECONFIG)
        """
        self.timeout = timeout
        self.env = os.environ.copy()
        if env:
            self.env.update(env)

    async def _run_kubectl_command(self, args: list[str], stdin_input: str | None = None) -> tuple[str, str, int]:
        """
        Run a kubectl command directly with subprocess.

        Args:
            args: List of kubectl command arguments
            stdin_input: Optional string to pass to stdin (used with "-f -")

        Returns:
            Tuple of (stdout, stderr, return_code)

        Raises:
            PlatformApiError: If kubectl cannot be started, times out or cannot reach the API server
        """
        cmd = ["kubectl"] + args
        cmd_str = " ".join(f'"{arg}"' if " " in arg else arg for arg in cmd)
        logger.debug(f"Running kubectl command: {cmd_str}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if stdin_input is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as e:
            raise PlatformApiError(f"Unable to run kubectl: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin_input.encode("utf-8") if stdin_input is not None else None),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise PlatformApiError(f"kubectl {args[0]} timed out after {self.timeout}s") from e

        stdout_str = stdout.decode("utf-8").strip()
        stderr_str = stderr.decode("utf-8").strip()

        if process.returncode != 0:
            logger.debug(f"kubectl command failed with code {process.returncode}: {stderr_str}")
            if "connection refused" in stderr_str.lower() or "unable to connect" in stderr_str.lower():
                raise PlatformApiError(f"kubectl connection failed: {stderr_str}")
        else:
            logger.debug(f"kubectl command succeeded: {cmd_str}")

        return stdout_str, stderr_str, process.returncode or 0

    async def test_connection(self) -> bool:
        stdout, stderr, code = await self._run_kubectl_command(["auth", "whoami"])
        if code != 0:
            logger.warning(f"Kubectl connection failed: {stderr}")
            return False
        logger.info("Kubectl connection successful")
        return True

    @retry(
        stop=stop_after_attempt(10),
        wait=wait_fixed(3),
        retry=retry_if_exception_type(PlatformApiError),
        reraise=True,
    )
    async def wait_until_connected(self) -> None:
        """
        Block until the API server answers, retrying with a fixed delay.

        Raises:
            PlatformApiError: If the cluster is still unreachable after all attempts
        """
        if not await self.test_connection():
            raise PlatformApiError("kubectl connection is not available")

    async def get_object(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        """
        Fetch a single object as JSON.

        Args:
            kind: Resource type as understood by kubectl (e.g. "namespace", "secret", "projects.kyotu.tech")
            name: Object name
            namespace: Namespace for namespaced kinds

        Returns:
            The object, or None if it does not exist

        Raises:
            PlatformApiError: On any failure other than NotFound
        """
        args = ["get", kind, name, "-o", "json"]
        if namespace:
            args.extend(["-n", namespace])

        stdout, stderr, code = await self._run_kubectl_command(args)
        if code != 0:
            if "NotFound" in stderr:
                logger.debug(f"{kind} {name} not found{' in namespace ' + namespace if namespace else ''}")
                return None
            raise PlatformApiError(f"Failed to get {kind} {name}: {stderr}")

        try:
            return json.loads(stdout)
        except json.JSONDecodeError as e:
            raise PlatformApiError(f"Failed to parse {kind} {name}: {e}") from e

    async def create_manifest(self, manifest: dict[str, Any]) -> bool:
        """
        Create an object from an in-memory manifest.

        Returns:
            True if the object was created, False if it already existed

        Raises:
            PlatformApiError: If the create fails for any other reason
        """
        kind = manifest.get("kind", "object")
        name = manifest.get("metadata", {}).get("name") or manifest.get("metadata", {}).get("generateName")
        stdout, stderr, code = await self._run_kubectl_command(["create", "-f", "-"], stdin_input=json.dumps(manifest))

        if code != 0:
            if "AlreadyExists" in stderr:
                logger.debug(f"{kind} {name} already exists")
                return False
            raise PlatformApiError(f"Failed to create {kind} {name}: {stderr}")

        logger.debug(f"Successfully created {kind} {name}: {stdout}")
        return True

    async def apply_manifest(self, manifest: dict[str, Any]) -> None:
        """
        Apply an in-memory manifest (create or update).

        Raises:
            PlatformApiError: If the apply fails
        """
        kind = manifest.get("kind", "object")
        name = manifest.get("metadata", {}).get("name")
        stdout, stderr, code = await self._run_kubectl_command(["apply", "-f", "-"], stdin_input=json.dumps(manifest))

        if code != 0:
            raise PlatformApiError(f"Failed to apply {kind} {name}: {stderr}")

        logger.debug(f"Successfully applied {kind} {name}: {stdout}")

    async def delete_resource(self, kind: str, name: str, namespace: str | None = None) -> None:
        """
        Delete an object; a missing object is not an error.

        Raises:
            PlatformApiError: If the delete fails
        """
        args = ["delete", kind, name, "--ignore-not-found=true", "--wait=false"]
        if namespace:
            args.extend(["-n", namespace])

        stdout, stderr, code = await self._run_kubectl_command(args)
        if code != 0:
            raise PlatformApiError(f"Failed to delete {kind} {name}: {stderr}")

        logger.debug(f"Successfully deleted {kind} {name}")

    async def patch_merge(self, kind: str, name: str, patch: dict[str, Any], namespace: str | None = None) -> None:
        """
        Apply a JSON merge patch to an object.

        Raises:
            PlatformApiError: If the object does not exist or the patch is rejected
        """
        args = ["patch", kind, name, "--type", "merge", "-p", json.dumps(patch)]
        if namespace:
            args.extend(["-n", namespace])

        stdout, stderr, code = await self._run_kubectl_command(args)
        if code != 0:
            raise PlatformApiError(f"Failed to patch {kind} {name}: {stderr}")

        logger.debug(f"Successfully patched {kind} {name}: {stdout}")

    async def create_event(
        self,
        involved_object: dict[str, Any],
        reason: str,
        message: str,
        reporter: str,
        event_type: str = "Normal",
    ) -> None:
        """
        Record a core/v1 Event against an object.

        Args:
            involved_object: Object reference with apiVersion, kind, name, namespace and optionally uid
            reason: Short CamelCase reason (e.g. "Create")
            message: Human-readable message
            reporter: Component name shown as the event source
            event_type: "Normal" or "Warning"
        """
        now = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        namespace = involved_object.get("namespace") or "default"
        event = {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"generateName": f"{involved_object['name']}.", "namespace": namespace},
            "involvedObject": {k: v for k, v in involved_object.items() if v},
            "reason": reason,
            "message": message,
            "type": event_type,
            "source": {"component": reporter},
            "reportingComponent": reporter,
            "reportingInstance": reporter,
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
        await self.create_manifest(event)
        logger.debug(f"Recorded {event_type} event {reason} for {involved_object['kind']} {namespace}/{involved_object['name']}")
