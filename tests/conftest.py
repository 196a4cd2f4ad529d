"""Shared fixtures: a mocked KubeClient describing a healthy environment and in-memory object storage."""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from lib.constants import (
    APP_LABEL_SELECTOR,
    KAFKA_LABEL_SELECTOR,
    METRICS_SERVER_LABEL_SELECTOR,
    REDIS_LABEL_SELECTOR,
    SYSTEM_NAMESPACE,
    TIMESCALEDB_LABEL_SELECTOR,
)
from lib.object_storage import ObjectStorageClient


def make_node(name, ready=True, pressure=()):
    conditions = [{"type": "Ready", "status": "True" if ready else "False"}]
    conditions += [{"type": c, "status": "True"} for c in pressure]
    return {"metadata": {"name": name}, "status": {"conditions": conditions}}


def make_pod(name, phase="Running", ready=True, non_root=True, privileged=False, limits=True, requests=True):
    resources = {}
    if limits:
        resources["limits"] = {"cpu": "1", "memory": "1Gi"}
    if requests:
        resources["requests"] = {"cpu": "100m", "memory": "256Mi"}
    security_context = {"run_as_non_root": non_root}
    if privileged:
        security_context["privileged"] = True
    return {
        "metadata": {"name": name},
        "spec": {"containers": [{"name": "main", "security_context": security_context, "resources": resources}]},
        "status": {
            "phase": phase,
            "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
        },
    }


def healthy_pods():
    return {
        APP_LABEL_SELECTOR: [make_pod("api-1"), make_pod("api-2")],
        TIMESCALEDB_LABEL_SELECTOR: [make_pod("timescaledb-0")],
        REDIS_LABEL_SELECTOR: [make_pod(f"redis-{i}") for i in range(3)],
        KAFKA_LABEL_SELECTOR: [make_pod(f"kafka-{i}") for i in range(3)],
    }


class FakeCluster:
    """Mutable description of a cluster that backs the mocked KubeClient."""

    def __init__(self):
        self.nodes = [make_node("node-1"), make_node("node-2"), make_node("node-3")]
        self.system_pods = [make_pod("coredns-1"), make_pod("kube-proxy-1")]
        self.metrics_pods = [make_pod("metrics-server-1")]
        self.pods = healthy_pods()
        self.resources = {
            "services": [{"metadata": {"name": "api"}}],
            "networkpolicies": [{"metadata": {"name": "default-deny"}}],
            "poddisruptionbudgets": [{"metadata": {"name": "api"}}],
            "secrets": [{"metadata": {"name": "db-credentials"}, "type": "Opaque"}],
            "horizontalpodautoscalers": [{"metadata": {"name": "api"}}],
            "ingresses": [{"metadata": {"name": "api"}}],
        }

    def get_pods(self, namespace, label_selector=None):
        if namespace == SYSTEM_NAMESPACE:
            if label_selector == METRICS_SERVER_LABEL_SELECTOR:
                return self.metrics_pods
            return self.system_pods
        if label_selector is None:
            return [p for pods in self.pods.values() for p in pods]
        return self.pods.get(label_selector, [])

    def list_resources(self, kind, namespace=None):
        return self.resources.get(kind, [])


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def healthy_kube(cluster):
    """MagicMock KubeClient whose reads are served from ``cluster``."""
    kube = MagicMock()
    kube.context = "test-context"
    kube.is_accessible.return_value = True
    kube.get_server_version.return_value = "v1.29.4"
    kube.namespace_exists.return_value = True
    kube.list_nodes.side_effect = lambda: cluster.nodes
    kube.get_pods.side_effect = cluster.get_pods
    kube.list_resources.side_effect = cluster.list_resources
    return kube


class InMemoryS3:
    """Just enough of the boto3 S3 client surface for ObjectStorageClient."""

    def __init__(self):
        self.objects = {}

    @staticmethod
    def _missing(code, operation):
        return ClientError({"Error": {"Code": code, "Message": "Not Found"}}, operation)

    def put_object(self, Bucket, Key, Body, Metadata=None, **kwargs):
        self.objects[Key] = (bytes(Body), dict(Metadata or {}))

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self._missing("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Key][0])}

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self._missing("404", "HeadObject")
        data, metadata = self.objects[Key]
        return {"ContentLength": len(data), "Metadata": metadata}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def get_paginator(self, operation):
        objects = self.objects
        paginator = MagicMock()
        paginator.paginate.side_effect = lambda Bucket, Prefix: [
            {"Contents": [{"Key": k} for k in sorted(objects) if k.startswith(Prefix)]}
        ]
        return paginator


@pytest.fixture
def s3_memory():
    return InMemoryS3()


@pytest.fixture
def memory_storage(s3_memory):
    return ObjectStorageClient("lifecycle-backups", s3_client=s3_memory)
