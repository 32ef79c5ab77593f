# /*
# Copyright 2026 The env-manager Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Constants: ownership markers, defaults and retry budgets."""

from __future__ import annotations

# -- Ownership markers --
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "env-manager"
LABEL_ENVIRONMENT = "env-manager.io/environment"
ANNOTATION_PAYLOAD_HASH = "env-manager.io/payload-hash"
ANNOTATION_DEPENDS_ON = "env-manager.io/depends-on"

# -- Namespaces --
NS_DEFAULT = "default"
NS_KUBE_SYSTEM = "kube-system"

# Kinds that are never namespaced. Anything else gets "default" when the
# manifest omits metadata.namespace.
CLUSTER_SCOPED_KINDS = frozenset({
    "APIService",
    "ClusterRole",
    "ClusterRoleBinding",
    "CustomResourceDefinition",
    "IngressClass",
    "MutatingWebhookConfiguration",
    "Namespace",
    "Node",
    "PersistentVolume",
    "PriorityClass",
    "StorageClass",
    "ValidatingWebhookConfiguration",
})

# Kinds queried when listing owned resources for pruning.
DEFAULT_MANAGED_KINDS = (
    "namespaces",
    "configmaps",
    "secrets",
    "serviceaccounts",
    "services",
    "persistentvolumeclaims",
    "persistentvolumes",
    "pods",
    "deployments",
    "daemonsets",
    "statefulsets",
    "jobs",
    "cronjobs",
    "roles",
    "rolebindings",
    "clusterroles",
    "clusterrolebindings",
    "ingresses",
)

# -- k3d cluster defaults --
DEFAULT_CLUSTER_NAME = "k3d"
DEFAULT_API_PORT = 6550
DEFAULT_AGENTS = 0
DEFAULT_K3S_IMAGE = "rancher/k3s:v1.33.5-k3s1"
DEFAULT_CLUSTER_CREATE_MAX_RETRIES = 3
CLUSTER_CREATE_RETRY_WAIT_SECONDS = 10
CLUSTER_TIMEOUT = "120s"
DEFAULT_NODE_READY_TIMEOUT = 60

# -- Reconciliation defaults --
DEFAULT_ACTION_RETRIES = 3
DEFAULT_READ_RETRIES = 3
DEFAULT_BACKOFF_INITIAL_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_SECONDS = 8.0
DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_READINESS_TIMEOUT_SECONDS = 60.0
KUBECTL_TIMEOUT_SECONDS = 30

# -- Smoke test defaults --
DEFAULT_SMOKE_TIMEOUT_SECONDS = 5.0

# -- Load test (WebV) defaults --
DEFAULT_WEBV_COMMAND = "webv"
DEFAULT_WEBV_SLEEP_MS = 100

# -- Desired-state input --
DEFAULT_ENVIRONMENT_FILE = "environment.yaml"

# -- Exit codes --
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_INPUT = 2

# -- kubeconfig --
K3D_CONTEXT_PREFIX = "k3d-"

# Workloads k3s starts in kube-system; waited on after cluster creation
# unless the environment file declares its own system_waits.
DEFAULT_SYSTEM_WAITS = (
    {"kind": "Job", "name": "helm-install-traefik", "namespace": NS_KUBE_SYSTEM, "condition": "Complete"},
    {"kind": "Pod", "namespace": NS_KUBE_SYSTEM, "selector": "app=local-path-provisioner"},
    {"kind": "Pod", "namespace": NS_KUBE_SYSTEM, "selector": "k8s-app=metrics-server"},
    {"kind": "Pod", "namespace": NS_KUBE_SYSTEM, "selector": "k8s-app=kube-dns"},
    {"kind": "Pod", "namespace": NS_KUBE_SYSTEM, "selector": "app.kubernetes.io/name=traefik"},
)
