"""
Manifest Loader - reads the paired deployment template from disk.

The template is plain Kubernetes YAML. Decoding only accepts a single
apps/v1 Deployment document.
"""

import logging
from typing import Any, Dict, Optional

import yaml

from config import DEFAULT_MANIFEST_PATH
from errors import ManifestDecodeError, ManifestError

logger = logging.getLogger(__name__)

DEPLOYMENT_API_VERSION = "apps/v1"
DEPLOYMENT_KIND = "Deployment"


class ManifestLoader:
    """Loads and decodes the deployment template."""

    def __init__(self, path: str = DEFAULT_MANIFEST_PATH):
        self.path = path

    def load(self, path: Optional[str] = None) -> bytes:
        """
        Read the raw template bytes.

        Args:
            path: Override for the configured template path.

        Raises:
            ManifestError: If the file cannot be read.
        """
        path = path or self.path
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise ManifestError(f"Unable to read manifest {path}: {e}") from e

    def decode(self, data: bytes) -> Dict[str, Any]:
        """
        Decode template bytes into a Deployment dict.

        Raises:
            ManifestDecodeError: If the document is not valid YAML or is not
                an apps/v1 Deployment.
        """
        try:
            obj = yaml.safe_load(data)
        except yaml.YAMLError as e:
            raise ManifestDecodeError(f"Invalid YAML in manifest: {e}") from e

        if not isinstance(obj, dict):
            raise ManifestDecodeError("Manifest must be a single YAML mapping")

        api_version = obj.get("apiVersion")
        kind = obj.get("kind")
        if api_version != DEPLOYMENT_API_VERSION or kind != DEPLOYMENT_KIND:
            raise ManifestDecodeError(
                f"Manifest must be {DEPLOYMENT_API_VERSION} {DEPLOYMENT_KIND}, "
                f"got {api_version} {kind}"
            )

        if not isinstance(obj.get("metadata"), dict):
            obj["metadata"] = {}
        return obj

    def load_deployment(self) -> Dict[str, Any]:
        """Load and decode the configured template in one step."""
        return self.decode(self.load())
