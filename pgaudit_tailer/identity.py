"""Resolves which project, namespace and cluster this process ships audit logs for."""

import logging
import os
from dataclasses import dataclass

import urllib3
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

logger = logging.getLogger(__name__)

CLUSTER_NAME_LABEL = "cluster-name"
PROJECT_ID_LABEL = "google-cloud-project"
LOCAL_NAMESPACE = "local"
LOCAL_CLUSTER_NAME = "local-cluster"

# HTTP errors from the API server plus transport failures reaching it.
_API_ERRORS = (ApiException, urllib3.exceptions.HTTPError, OSError)


class IdentityError(Exception):
    """Identity metadata could not be resolved."""


@dataclass(frozen=True)
class Identity:
    project_id: str
    namespace: str
    cluster_name: str

    @property
    def database_id(self) -> str:
        return f"{self.project_id}:{self.cluster_name}"


def local_identity(project_id: str) -> Identity:
    return Identity(project_id=project_id, namespace=LOCAL_NAMESPACE, cluster_name=LOCAL_CLUSTER_NAME)


def resolve_identity(project_id: str = "", api=None) -> Identity:
    """Use project_id directly when given, otherwise ask the Kubernetes API.

    The pod is found from POD_NAME / POD_NAMESPACE; its ``cluster-name``
    label gives the cluster and the namespace's ``google-cloud-project``
    label gives the project.
    """
    if project_id:
        logger.info("Running in local mode with project: %s", project_id)
        return local_identity(project_id)

    pod_name = os.environ.get("POD_NAME", "")
    if not pod_name:
        raise IdentityError("POD_NAME environment variable is not set")
    namespace = os.environ.get("POD_NAMESPACE", "")
    if not namespace:
        raise IdentityError("POD_NAMESPACE environment variable is not set")

    if api is None:
        api = _in_cluster_api()

    try:
        pod = api.read_namespaced_pod(name=pod_name, namespace=namespace)
    except _API_ERRORS as e:
        raise IdentityError(f"failed to get pod {namespace}/{pod_name}: {_reason(e)}") from e
    cluster_name = (pod.metadata.labels or {}).get(CLUSTER_NAME_LABEL)
    if not cluster_name:
        raise IdentityError(f"{CLUSTER_NAME_LABEL} label not found in pod metadata")

    try:
        ns = api.read_namespace(name=namespace)
    except _API_ERRORS as e:
        raise IdentityError(f"failed to get namespace {namespace}: {_reason(e)}") from e
    resolved_project = (ns.metadata.labels or {}).get(PROJECT_ID_LABEL)
    if not resolved_project:
        raise IdentityError(f"{PROJECT_ID_LABEL} label not found in namespace {namespace}")

    identity = Identity(project_id=resolved_project, namespace=namespace, cluster_name=cluster_name)
    logger.info("Sending audit logs to project: %s in namespace: %s for cluster: %s",
                identity.project_id, identity.namespace, identity.cluster_name)
    return identity


def _reason(e: Exception) -> str:
    if isinstance(e, ApiException):
        return str(e.reason)
    return str(e)


def _in_cluster_api() -> k8s_client.CoreV1Api:
    try:
        k8s_config.load_incluster_config()
    except ConfigException as e:
        raise IdentityError(f"failed to create in-cluster config: {e}") from e
    return k8s_client.CoreV1Api()
