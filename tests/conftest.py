"""Pytest configuration and fixtures."""

import asyncio
import copy

import pytest
from kubernetes.client import ApiException

from manifest import ManifestLoader
from models import Emitter, ObjectKey
from reconciler import EmitterReconciler
from tracking import DeploymentTracker

DEPLOYMENT_TEMPLATE = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: emitter
  labels:
    app: emitter
spec:
  replicas: 1
  selector:
    matchLabels:
      app: emitter
  template:
    metadata:
      labels:
        app: emitter
    spec:
      containers:
        - name: emitter
          image: nginx:1.25
"""


def not_found():
    return ApiException(status=404, reason="Not Found")


def make_emitter(namespace="default", name="e1", pair_name="foo", create_pair=True):
    """Build an Emitter as the API server would return it."""
    return Emitter.from_resource(
        {
            "apiVersion": "webapp.hello.operator.com/v1",
            "kind": "Emitter",
            "metadata": {"namespace": namespace, "name": name},
            "spec": {"pairName": pair_name, "createPair": create_pair},
        }
    )


class FakeStore:
    """In-memory stand-in for ResourceStore that records every write."""

    def __init__(self):
        self.emitters = {}
        self.deployments = {}
        self.created = []
        self.deleted = []
        # Errors to raise, keyed by operation name
        self.errors = {}

    def add_emitter(self, emitter):
        self.emitters[emitter.key] = emitter

    def remove_emitter(self, key):
        self.emitters.pop(key, None)

    def add_deployment(self, namespace, name, annotations=None):
        self.deployments[ObjectKey(namespace, name)] = {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "namespace": namespace,
                "name": name,
                "annotations": annotations or {},
            },
        }

    def _maybe_raise(self, op):
        if op in self.errors:
            raise self.errors[op]

    async def get_emitter(self, key):
        self._maybe_raise("get_emitter")
        if key not in self.emitters:
            raise not_found()
        return self.emitters[key]

    async def list_emitters(self, namespace=None):
        self._maybe_raise("list_emitters")
        return [
            e for k, e in self.emitters.items() if not namespace or k.namespace == namespace
        ]

    async def get_deployment(self, namespace, name):
        self._maybe_raise("get_deployment")
        key = ObjectKey(namespace, name)
        if key not in self.deployments:
            raise not_found()
        return copy.deepcopy(self.deployments[key])

    async def create_deployment(self, namespace, body):
        self._maybe_raise("create_deployment")
        key = ObjectKey(namespace, body["metadata"]["name"])
        if key in self.deployments:
            raise ApiException(status=409, reason="Conflict")
        self.deployments[key] = copy.deepcopy(body)
        self.created.append(key)
        return body

    async def delete_deployment(self, namespace, name):
        self._maybe_raise("delete_deployment")
        key = ObjectKey(namespace, name)
        if key not in self.deployments:
            raise not_found()
        del self.deployments[key]
        self.deleted.append(key)

    async def list_deployments(self, namespace, annotations=None):
        self._maybe_raise("list_deployments")
        matched = []
        for key, item in self.deployments.items():
            if key.namespace != namespace:
                continue
            present = item["metadata"].get("annotations") or {}
            if all(present.get(k) == v for k, v in (annotations or {}).items()):
                matched.append(copy.deepcopy(item))
        return matched


@pytest.fixture
def manifest_path(tmp_path):
    """Write the deployment template to a temp file."""
    path = tmp_path / "emitter-deployment.yaml"
    path.write_text(DEPLOYMENT_TEMPLATE)
    return str(path)


@pytest.fixture
def loader(manifest_path):
    return ManifestLoader(manifest_path)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def tracker():
    return DeploymentTracker()


@pytest.fixture
def reconciler(store, loader, tracker):
    return EmitterReconciler(store=store, loader=loader, tracker=tracker)


async def wait_until(predicate, timeout=2.0):
    """Poll until predicate() is truthy."""

    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)
