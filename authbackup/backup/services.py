"""Pausing application containers around a restore."""

import logging
from typing import List

import docker
from docker.errors import APIError, DockerException

from authbackup.utils.errors import ServiceControlError

logger = logging.getLogger(__name__)


class ApplicationServiceController:
    """Stops and restarts the application containers selected by a label."""

    def __init__(self, label: str):
        """
        Initialize service controller.

        Args:
            label: Docker label filter, e.g. 'authbackup.role=app'
        """
        self.label = label
        self._client = None
        self._stopped: List[str] = []

    @property
    def client(self):
        """Get Docker client, initializing if needed."""
        if self._client is None:
            try:
                self._client = docker.from_env()
                self._client.ping()
            except DockerException as e:
                self._client = None
                raise ServiceControlError(
                    "Could not connect to Docker to pause application services",
                    details=str(e),
                    suggestions=["Start the Docker daemon", "Or run the restore without --stop-services"],
                )
        return self._client

    def stop_services(self) -> List[str]:
        """
        Stop running containers carrying the label.

        Returns:
            List[str]: Names of the containers stopped
        """
        try:
            containers = self.client.containers.list(filters={"label": self.label, "status": "running"})
            names = []
            for container in containers:
                logger.info("Stopping %s", container.name)
                container.stop(timeout=30)
                self._stopped.append(container.id)
                names.append(container.name)
        except APIError as e:
            raise ServiceControlError("Failed to stop application services", details=str(e))

        return names

    def start_services(self) -> List[str]:
        """
        Start the containers stopped by stop_services().

        Returns:
            List[str]: Names of the containers started
        """
        names = []
        try:
            while self._stopped:
                container = self.client.containers.get(self._stopped[0])
                logger.info("Starting %s", container.name)
                container.start()
                names.append(container.name)
                self._stopped.pop(0)
        except APIError as e:
            raise ServiceControlError("Failed to restart application services", details=str(e))

        return names
