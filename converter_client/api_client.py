"""
API client for the conversion service.

Handles HTTP communication and error handling, and provides simple
methods to submit a URL, poll the task and fetch the produced audio.
"""

import os
import time
from typing import Any

import requests
import structlog

logger = structlog.get_logger(__name__)


def _error_message(error: requests.exceptions.RequestException) -> str:
    """Prefer the service's ``{error, details}`` body over the bare HTTP error."""
    response = getattr(error, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
    return str(error)


class ConverterAPIClient:
    """Simple HTTP client for the conversion API."""

    def __init__(self, base_url: str | None = None):
        """Initialize the API client.

        Args:
            base_url: Service URL. If None, reads from CONVERTER_URL env var.
        """
        self.base_url = (base_url or os.getenv("CONVERTER_URL", "http://localhost:8000")).rstrip(
            "/"
        )
        self.session = requests.Session()

        logger.info("API client initialized", base_url=self.base_url)

    def health_check(self) -> tuple[bool, dict[str, Any]]:
        """Check if the service is healthy.

        Returns:
            (is_healthy, health_data)
        """
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=5)
            response.raise_for_status()
            data = response.json()
            return data.get("status") == "healthy", data
        except requests.exceptions.RequestException as e:
            logger.warning("Service health check failed", error=str(e))
            return False, {"error": str(e)}

    def submit(self, url: str) -> tuple[bool, str, dict[str, Any]]:
        """Submit a YouTube URL for conversion.

        Returns:
            (success, task_id_or_error, response_data)
        """
        try:
            logger.info("Submitting conversion", url=url)
            response = self.session.post(f"{self.base_url}/convert", json={"url": url}, timeout=30)
            response.raise_for_status()

            data = response.json()
            logger.info("Conversion submitted", task_id=data["task_id"], status=data["status"])
            return True, data["task_id"], data

        except requests.exceptions.RequestException as e:
            error_msg = f"Submission failed: {_error_message(e)}"
            logger.error("Conversion submission failed", error=str(e))
            return False, error_msg, {"error": error_msg}

    def get_task_status(self, task_id: str) -> tuple[bool, dict[str, Any]]:
        """Get current task status.

        Returns:
            (success, task_data). A 404 yields ``{"error": ..., "not_found": True}``.
        """
        try:
            response = self.session.get(f"{self.base_url}/status/{task_id}", timeout=10)
            response.raise_for_status()
            return True, response.json()

        except requests.exceptions.RequestException as e:
            error_msg = f"Failed to get task status: {_error_message(e)}"
            logger.error("Task status check failed", task_id=task_id, error=str(e))
            not_found = e.response is not None and e.response.status_code == 404
            return False, {"error": error_msg, "not_found": not_found}

    def _task_action(self, action: str, task_id: str) -> tuple[bool, dict[str, Any]]:
        try:
            response = self.session.post(
                f"{self.base_url}/{action}", json={"task_id": task_id}, timeout=10
            )
            response.raise_for_status()
            return True, response.json()

        except requests.exceptions.RequestException as e:
            error_msg = f"Failed to {action} task: {_error_message(e)}"
            logger.error("Task action failed", action=action, task_id=task_id, error=str(e))
            return False, {"error": error_msg}

    def cleanup_task(self, task_id: str) -> tuple[bool, dict[str, Any]]:
        """Force a stuck task into the error state."""
        return self._task_action("cleanup", task_id)

    def retry_task(self, task_id: str) -> tuple[bool, dict[str, Any]]:
        """Reset a failed or stuck task and run it again."""
        return self._task_action("retry", task_id)

    def get_performance_mode(self) -> tuple[bool, dict[str, Any]]:
        """Current performance mode and the available profiles."""
        try:
            response = self.session.get(f"{self.base_url}/performance-mode", timeout=10)
            response.raise_for_status()
            return True, response.json()

        except requests.exceptions.RequestException as e:
            error_msg = f"Failed to get performance mode: {_error_message(e)}"
            logger.error("Performance mode lookup failed", error=str(e))
            return False, {"error": error_msg}

    def set_performance_mode(
        self, mode: str, reason: str | None = None
    ) -> tuple[bool, dict[str, Any]]:
        """Switch the profile new conversion attempts start from."""
        payload: dict[str, Any] = {"mode": mode}
        if reason:
            payload["reason"] = reason
        try:
            response = self.session.post(
                f"{self.base_url}/performance-mode", json=payload, timeout=10
            )
            response.raise_for_status()
            data = response.json()
            logger.info(
                "Performance mode switched",
                previous_mode=data.get("previous_mode"),
                current_mode=data.get("current_mode"),
            )
            return True, data

        except requests.exceptions.RequestException as e:
            error_msg = f"Failed to set performance mode: {_error_message(e)}"
            logger.error("Performance mode switch failed", mode=mode, error=str(e))
            return False, {"error": error_msg}

    def download(
        self,
        task_id: str,
        byte_range: tuple[int, int | None] | None = None,
    ) -> tuple[bool, bytes | str]:
        """Download the produced MP3.

        Args:
            task_id: Finished task
            byte_range: Optional inclusive (start, end) range; end None means to EOF

        Returns:
            (success, audio_bytes_or_error)
        """
        headers = {}
        if byte_range is not None:
            start, end = byte_range
            headers["Range"] = f"bytes={start}-{'' if end is None else end}"

        try:
            response = self.session.get(
                f"{self.base_url}/download/{task_id}", headers=headers, timeout=60
            )
            response.raise_for_status()
            logger.info(
                "Audio downloaded",
                task_id=task_id,
                size_bytes=len(response.content),
                partial=response.status_code == 206,
            )
            return True, response.content

        except requests.exceptions.RequestException as e:
            error_msg = f"Download failed: {_error_message(e)}"
            logger.error("Audio download failed", task_id=task_id, error=str(e))
            return False, error_msg

    def poll_until_complete(
        self,
        task_id: str,
        progress_callback=None,
        poll_interval: float = 2.0,
        timeout: float = 300.0,
    ) -> tuple[bool, dict[str, Any]]:
        """Poll task until it finishes, fails or the timeout elapses.

        Args:
            task_id: Task ID to poll
            progress_callback: Function called with (progress, status) on updates
            poll_interval: Seconds between polls
            timeout: Maximum seconds to wait

        Returns:
            (success, final_task_data)
        """
        start_time = time.time()

        while time.time() - start_time < timeout:
            success, task_data = self.get_task_status(task_id)

            if not success:
                return False, task_data

            status = task_data.get("status")

            if progress_callback:
                progress_callback(task_data.get("progress", 0), status)

            if status == "finished":
                logger.info("Task finished", task_id=task_id)
                return True, task_data
            elif status == "error":
                logger.error("Task failed", task_id=task_id, error=task_data.get("error"))
                return False, task_data

            # Sleep before next poll
            time.sleep(poll_interval)

        # Timeout reached
        logger.warning("Task polling timeout", task_id=task_id, timeout=timeout)
        return False, {"error": f"Task timeout after {timeout} seconds"}
