#!/usr/bin/env python3
"""
Run Docker registry garbage collection.

Executes:
    registry garbage-collect --delete-untagged /etc/docker/registry/config.yml

either as a local subprocess (the listener shares the registry's storage
volume) or inside a running pod of the registry StatefulSet. Garbage
collection against one storage volume must never run twice at the same
time, so every invocation goes through a single lock: a second caller waits
for the running collection to finish.
"""

import subprocess
import threading
import time
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from gc_listener.error_utils import ReclamationFailure, create_kubernetes_error, create_reclamation_error
from gc_listener.logging_utils import get_logger, log_exception

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "/etc/docker/registry/config.yml"


def _load_kubernetes_config():
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        from kubernetes.config import load_incluster_config

        load_incluster_config()
    except Exception:
        from kubernetes.config import load_kube_config

        load_kube_config()


def _get_kubernetes_clients() -> Tuple[Any, Any]:
    """Helper function to get Kubernetes API clients.

    Returns:
        Tuple of (CoreV1Api, AppsV1Api)
    """
    from kubernetes import client as k8s_client

    _load_kubernetes_config()
    return k8s_client.CoreV1Api(), k8s_client.AppsV1Api()


def _open_exec_stream(core_v1, pod_name: str, namespace: str, container: Optional[str], command: List[str]):
    from kubernetes.stream import stream

    return stream(
        core_v1.connect_get_namespaced_pod_exec,
        pod_name,
        namespace,
        command=command,
        container=container,
        stderr=True,
        stdout=True,
        stdin=False,
        tty=False,
        _preload_content=False,
    )


class RegistryGarbageCollector:
    """Serialized trigger for the registry's garbage-collect command."""

    def __init__(
        self,
        config_path: str = DEFAULT_CONFIG_PATH,
        binary: str = "registry",
        delete_untagged: bool = True,
        mode: str = "local",
        statefulset: str = "docker-registry",
        namespace: str = "default",
        shutdown: Optional[threading.Event] = None,
        poll_interval: float = 0.5,
    ):
        """Initialize RegistryGarbageCollector.

        Args:
            config_path: Registry configuration file passed to garbage-collect
            binary: Registry executable name or path
            delete_untagged: Pass --delete-untagged so untagged manifests are removed too
            mode: "local" to run a subprocess, "kubernetes" to exec into the registry pod
            statefulset: Registry StatefulSet name (kubernetes mode)
            namespace: Registry namespace (kubernetes mode)
            shutdown: Process-wide shutdown event; a running collection is terminated when set
            poll_interval: How often waits check the shutdown event, in seconds
        """
        self.config_path = config_path
        self.binary = binary
        self.delete_untagged = delete_untagged
        self.mode = mode
        self.statefulset = statefulset
        self.namespace = namespace
        self.shutdown = shutdown or threading.Event()
        self.poll_interval = poll_interval
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._last_result: Optional[Tuple[bool, str]] = None
        self.runs = 0

    @classmethod
    def from_config(cls, config_manager, shutdown: Optional[threading.Event] = None) -> "RegistryGarbageCollector":
        return cls(
            config_path=config_manager.get_gc_config_path(),
            binary=config_manager.get_gc_binary(),
            delete_untagged=config_manager.get_gc_delete_untagged(),
            mode=config_manager.get_gc_mode(),
            statefulset=config_manager.get_registry_statefulset(),
            namespace=config_manager.get_registry_namespace(),
            shutdown=shutdown,
        )

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @property
    def last_result(self) -> Optional[Tuple[bool, str]]:
        """(success, finished_at ISO timestamp) of the last completed collection."""
        with self._state_lock:
            return self._last_result

    def build_command(self) -> List[str]:
        cmd = [self.binary, "garbage-collect"]
        if self.delete_untagged:
            cmd.append("--delete-untagged")
        cmd.append(self.config_path)
        return cmd

    def run(self) -> bool:
        """Run garbage collection once, waiting for any collection already running.

        Returns:
            True if garbage-collect completed successfully, False otherwise.
            Failures are logged, never raised.
        """
        while not self._lock.acquire(timeout=self.poll_interval):
            if self.shutdown.is_set():
                logger.info("Shutdown requested; queued garbage collection dropped")
                return False

        try:
            if self.shutdown.is_set():
                logger.info("Shutdown requested; garbage collection skipped")
                return False

            logger.info("GC start")
            started = time.monotonic()
            try:
                if self.mode == "kubernetes":
                    output = self._execute_in_pod()
                else:
                    output = self._execute_local()
            except ReclamationFailure as e:
                logger.error("GC error: %s", e)
                if e.output:
                    logger.error("GC output:\n%s", e.output)
                self._record(False)
                return False
            except Exception as e:
                log_exception(logger, "GC error", e)
                self._record(False)
                return False

            logger.info("GC done in %.1fs", time.monotonic() - started)
            if output:
                logger.debug("GC output:\n%s", output)
            self._record(True)
            return True
        finally:
            self._lock.release()

    def _record(self, success: bool) -> None:
        with self._state_lock:
            self.runs += 1
            self._last_result = (success, datetime.now(timezone.utc).isoformat())

    def _execute_local(self) -> str:
        """Run garbage-collect as a subprocess; terminate it on shutdown."""
        cmd = self.build_command()
        logger.debug("Executing: %s", " ".join(cmd))
        try:
            process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
        except OSError as e:
            raise create_reclamation_error(cmd, None, error=e) from e

        while True:
            try:
                output, _ = process.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if not self.shutdown.is_set():
                    continue
                logger.warning("Shutdown requested; terminating garbage collection (pid %s)", process.pid)
                process.terminate()
                try:
                    output, _ = process.communicate(timeout=10)
                except subprocess.TimeoutExpired:
                    process.kill()
                    output, _ = process.communicate()
                raise create_reclamation_error(cmd, process.returncode, output or "")

        if process.returncode != 0:
            raise create_reclamation_error(cmd, process.returncode, output or "")
        return output or ""

    def _execute_in_pod(self) -> str:
        """Exec garbage-collect in a running pod of the registry StatefulSet."""
        cmd = self.build_command()
        try:
            from kubernetes.client.rest import ApiException
        except ImportError as e:
            raise create_reclamation_error(cmd, None, error=e) from e

        try:
            core_v1, apps_v1 = _get_kubernetes_clients()
        except Exception as e:
            raise create_reclamation_error(cmd, None, error=e) from e

        try:
            sts = apps_v1.read_namespaced_stateful_set(name=self.statefulset, namespace=self.namespace)
        except ApiException as e:
            actionable = create_kubernetes_error(
                f"Read StatefulSet {self.statefulset} in namespace {self.namespace}", e
            )
            raise create_reclamation_error(cmd, None, output=actionable.message, error=e) from e

        match_labels = (sts.spec.selector.match_labels or {}) if sts.spec and sts.spec.selector else {}
        if match_labels:
            label_selector = ",".join(f"{k}={v}" for k, v in match_labels.items())
        else:
            # Fallback: common label used by the classic chart
            label_selector = f"app={self.statefulset}"

        try:
            pods = core_v1.list_namespaced_pod(namespace=self.namespace, label_selector=label_selector)
        except ApiException as e:
            actionable = create_kubernetes_error(f"List pods of {self.statefulset} in namespace {self.namespace}", e)
            raise create_reclamation_error(cmd, None, output=actionable.message, error=e) from e
        if not pods.items:
            raise create_reclamation_error(
                cmd,
                None,
                output=f"No pods found for '{self.statefulset}' in namespace '{self.namespace}' "
                f"(selector: {label_selector})",
            )

        # Prefer a Running pod
        pod = next((p for p in pods.items if (p.status and p.status.phase == "Running")), pods.items[0])
        pod_name = pod.metadata.name
        container_name = pod.spec.containers[0].name if pod.spec and pod.spec.containers else None

        logger.info(
            "Executing registry garbage collection in pod '%s' (container: %s): %s",
            pod_name,
            container_name or "<default>",
            " ".join(cmd),
        )

        try:
            resp = _open_exec_stream(core_v1, pod_name, self.namespace, container_name, cmd)
        except ApiException as e:
            actionable = create_kubernetes_error(f"Exec into pod {pod_name}", e)
            raise create_reclamation_error(cmd, None, output=actionable.message, error=e) from e

        chunks: List[str] = []
        try:
            while resp.is_open():
                resp.update(timeout=self.poll_interval)
                self._drain(resp, chunks)
                if self.shutdown.is_set():
                    resp.close()
                    raise create_reclamation_error(cmd, None, "".join(chunks))
            # the channels may still hold output received just before the close
            self._drain(resp, chunks)
            returncode = resp.returncode
        except ReclamationFailure:
            raise
        except Exception as e:
            actionable = create_kubernetes_error(f"Stream garbage-collect output from pod {pod_name}", e)
            raise create_reclamation_error(
                cmd, None, output="".join(chunks) or actionable.message, error=e
            ) from e
        output = "".join(chunks)

        if returncode != 0:
            raise create_reclamation_error(cmd, returncode, output)
        return output

    @staticmethod
    def _drain(resp, chunks: List[str]) -> None:
        if resp.peek_stdout():
            chunks.append(resp.read_stdout())
        if resp.peek_stderr():
            chunks.append(resp.read_stderr())
