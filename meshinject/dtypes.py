import enum
from typing import Any, Dict, List, NamedTuple

from pydantic import BaseModel, Field, field_validator
from typing_extensions import Annotated

# Envoy and the X-Ray daemon run as this (non-root) user. The proxy init
# container excludes traffic from this UID when it sets up the iptables rules.
PROXY_UID = 1337

# Mount path of the Kubernetes service account token inside a container.
SERVICE_ACCOUNT_MOUNT_PATH = "/var/run/secrets/kubernetes.io/serviceaccount"


# -----------------------------------------------------------------------------
#                                    Errors
# -----------------------------------------------------------------------------
class RenderError(ValueError):
    """A container or volume fragment could not be produced."""


class ComposeError(Exception):
    """The patch document could not be assembled."""


# -----------------------------------------------------------------------------
#                                 Descriptors
# -----------------------------------------------------------------------------
class VolumeMount(BaseModel):
    """Reference to a volume mount of the application container."""
    model_config = {"frozen": True}

    name: str = Field(min_length=1)
    mount_path: str = Field(min_length=1)
    read_only: bool = False


class TracingKind(str, enum.Enum):
    DATADOG = "datadog"
    JAEGER = "jaeger"


class SidecarMeta(BaseModel):
    """Everything the renderer needs to know about the Envoy sidecar."""
    model_config = {"frozen": True}

    container_image: str = ""
    mesh_name: str = ""
    virtual_node_name: str = ""
    preview: str = "0"
    log_level: str = "info"
    region: str = ""
    cpu_requests: str = "10m"
    memory_requests: str = "32Mi"

    # Tracing backends.
    enable_jaeger_tracing: bool = False
    jaeger_address: str = ""
    jaeger_port: str = ""
    enable_datadog_tracing: bool = False
    datadog_address: str = ""
    datadog_port: str = ""

    # Feature toggles.
    inject_xray_sidecar: bool = False
    enable_stats_tags: bool = False
    enable_stats_d: bool = False

    # Lets Envoy and the X-Ray daemon use the service account of the app
    # container, eg to obtain AWS credentials via IRSA.
    service_account_volume_mount: VolumeMount | None = None

    @property
    def tracing_enabled(self) -> bool:
        return self.enable_jaeger_tracing or self.enable_datadog_tracing


class InitMeta(BaseModel):
    """Parameters of the init container that redirects the pod traffic."""
    model_config = {"frozen": True}

    container_image: str = ""
    ports: str = ""                  # "80,443"
    egress_ignored_ports: str = ""   # "22"
    ignored_ips: str = ""            # "169.254.169.254"
    cpu_requests: str = "10m"
    memory_requests: str = "32Mi"


class MeshConstants(BaseModel):
    """Annotation keys and runtime constants of the mesh data plane.

    The defaults match the current App Mesh runtime. They only exist as a
    model so that users (and tests) can override them.

    """
    model_config = {"frozen": True, "extra": "forbid"}

    # Annotation keys.
    cni_key: str = "appmesh.k8s.aws/appmeshCNI"
    egress_ignored_ips_key: str = "appmesh.k8s.aws/egressIgnoredIPs"
    egress_ignored_ports_key: str = "appmesh.k8s.aws/egressIgnoredPorts"
    ports_key: str = "appmesh.k8s.aws/ports"
    sidecar_inject_key: str = "appmesh.k8s.aws/sidecarInjectorWebhook"
    ignored_uid_key: str = "appmesh.k8s.aws/ignoredUID"
    proxy_egress_port_key: str = "appmesh.k8s.aws/proxyEgressPort"
    proxy_ingress_port_key: str = "appmesh.k8s.aws/proxyIngressPort"

    # Fixed values of the Envoy runtime.
    proxy_uid: str = str(PROXY_UID)
    proxy_egress_port: str = "15001"
    proxy_ingress_port: str = "15000"


class MutationRequest(BaseModel):
    """Describe the mutation of a single pod.

    NOTE: `existing_annotations=None` means the pod has no annotations at all,
    which is not the same as an empty dict (see `patch.annotation_patches`).

    """
    model_config = {"frozen": True}

    cni_annotation_mode_enabled: bool = False

    # Whether or not the respective list already exists in the pod spec.
    append_init_containers: bool = False
    append_sidecar_containers: bool = False
    append_image_pull_secret: bool = False

    has_image_pull_secret: bool = False
    existing_annotations: Dict[str, str] | None = None

    init: InitMeta = InitMeta()
    sidecar: SidecarMeta = SidecarMeta()


# -----------------------------------------------------------------------------
#                                  JSON Patch
# -----------------------------------------------------------------------------
class PatchOperation(NamedTuple):
    """One RFC 6902 operation."""
    op: str       # "add" or "replace"
    path: str     # JSON Pointer, eg "/spec/containers/-"
    value: Any


PatchDocument = List[PatchOperation]


# -----------------------------------------------------------------------------
#                             Injector Configuration
# -----------------------------------------------------------------------------
class SidecarDefaults(BaseModel):
    model_config = {"extra": "forbid"}

    image: str = Field(min_length=1)
    cpu_requests: str = "10m"
    memory_requests: str = "32Mi"


class InitDefaults(BaseModel):
    model_config = {"extra": "forbid"}

    image: str = Field(min_length=1)
    cpu_requests: str = "10m"
    memory_requests: str = "32Mi"
    ignored_ips: str = "169.254.169.254"
    egress_ignored_ports: str = "22"


class TracerEndpoint(BaseModel):
    """Collector of a tracing backend, eg the Datadog agent."""
    model_config = {"extra": "forbid"}

    enabled: bool = False
    address: str = ""
    port: str = ""

    @field_validator("port", mode="before")
    @classmethod
    def port_as_string(cls, port: Any) -> Any:
        # YAML will happily parse `port: 8126` as an integer.
        return str(port) if isinstance(port, int) else port


class TracingConfig(BaseModel):
    model_config = {"extra": "forbid"}

    inject_xray_sidecar: bool = False
    enable_stats_tags: bool = False
    enable_stats_d: bool = False
    datadog: TracerEndpoint = TracerEndpoint()
    jaeger: TracerEndpoint = TracerEndpoint()


class Config(BaseModel):
    """Cluster wide defaults of the injector."""
    model_config = {"extra": "forbid"}

    # Mesh and AWS region of the cluster.
    mesh_name: Annotated[str, Field(min_length=1)]
    region: Annotated[str, Field(min_length=1)]

    log_level: str = "info"
    preview: bool = False

    # Inject pods without an explicit `sidecarInjectorWebhook` annotation.
    inject_default: bool = True

    # Add the `appmesh-ecr-secret` image pull secret to every pod.
    ecr_secret: bool = False

    sidecar: SidecarDefaults
    init: InitDefaults
    tracing: TracingConfig = TracingConfig()
    constants: MeshConstants = MeshConstants()
