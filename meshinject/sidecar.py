"""Render the containers and volumes that make up the mesh sidecar.

Every function here returns a plain JSON compatible Python structure (the
"fragment"). The composer in `patch.py` embeds those into JSON patches.

All optional parts, eg environment variables or volume mounts, are added to
lists and never assembled from text snippets. This guarantees valid JSON for
every combination of feature toggles.

"""
import logging
from typing import Any, Dict, List

import yaml

from meshinject.dtypes import (
    PROXY_UID, InitMeta, MeshConstants, RenderError, SidecarMeta, TracingKind,
    VolumeMount,
)
from meshinject.yaml_io import Dumper

# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("meshinject")

# Envoy reads its (additional) static configuration from this file. The
# tracing init containers write it into the shared `envoy-tracing-config`
# volume.
TRACING_VOLUME_NAME = "envoy-tracing-config"
TRACING_MOUNT_PATH = "/tmp/envoy"
STATS_CONFIG_FILE = f"{TRACING_MOUNT_PATH}/envoyconf.yaml"

XRAY_DAEMON_IMAGE = "amazon/aws-xray-daemon"
TRACING_INIT_IMAGE = "busybox"


def _env(name: str, value: str) -> Dict[str, str]:
    return {"name": name, "value": value}


def _requests(cpu: str, memory: str) -> Dict[str, Any]:
    return {"requests": {"cpu": cpu, "memory": memory}}


def _volume_mount(mount: VolumeMount) -> Dict[str, Any]:
    return {
        "mountPath": mount.mount_path,
        "name": mount.name,
        "readOnly": mount.read_only,
    }


def _require(fields: Dict[str, str], container: str) -> None:
    """Raise `RenderError` if any of the `fields` is empty."""
    missing = sorted(k for k, v in fields.items() if not v)
    if missing:
        raise RenderError(f"Cannot render <{container}>: empty {missing}")


def render_envoy(meta: SidecarMeta) -> Dict[str, Any]:
    """Return the Envoy proxy container."""
    _require({
        "container_image": meta.container_image,
        "mesh_name": meta.mesh_name,
        "virtual_node_name": meta.virtual_node_name,
    }, "envoy")

    vn = f"mesh/{meta.mesh_name}/virtualNode/{meta.virtual_node_name}"
    env = [
        _env("APPMESH_VIRTUAL_NODE_NAME", vn),
        _env("APPMESH_PREVIEW", meta.preview),
        _env("ENVOY_LOG_LEVEL", meta.log_level),
    ]
    if meta.tracing_enabled:
        env.append(_env("ENVOY_STATS_CONFIG_FILE", STATS_CONFIG_FILE))
    env += [
        _env("AWS_ROLE_SESSION_NAME", meta.virtual_node_name),
        _env("AWS_REGION", meta.region),
    ]
    if meta.inject_xray_sidecar:
        env.append(_env("ENABLE_ENVOY_XRAY_TRACING", "1"))
    if meta.enable_stats_tags:
        env.append(_env("ENABLE_ENVOY_STATS_TAGS", "1"))
    if meta.enable_stats_d:
        env.append(_env("ENABLE_ENVOY_DOG_STATSD", "1"))

    mounts = []
    if meta.service_account_volume_mount is not None:
        mounts.append(_volume_mount(meta.service_account_volume_mount))
    if meta.tracing_enabled:
        mounts.append({"mountPath": TRACING_MOUNT_PATH, "name": TRACING_VOLUME_NAME})

    return {
        "name": "envoy",
        "image": meta.container_image,
        "securityContext": {"runAsUser": PROXY_UID},
        "ports": [{"containerPort": 9901, "name": "stats", "protocol": "TCP"}],
        "env": env,
        "volumeMounts": mounts,
        "resources": _requests(meta.cpu_requests, meta.memory_requests),
    }


def render_xray_daemon(meta: SidecarMeta) -> Dict[str, Any]:
    """Return the X-Ray daemon container."""
    _require({"virtual_node_name": meta.virtual_node_name}, "xray-daemon")

    mounts = []
    if meta.service_account_volume_mount is not None:
        mounts.append(_volume_mount(meta.service_account_volume_mount))

    return {
        "name": "xray-daemon",
        "image": XRAY_DAEMON_IMAGE,
        "securityContext": {"runAsUser": PROXY_UID},
        "ports": [{"containerPort": 2000, "name": "xray", "protocol": "UDP"}],
        "env": [_env("AWS_ROLE_SESSION_NAME", meta.virtual_node_name)],
        "volumeMounts": mounts,
        "resources": _requests(meta.cpu_requests, meta.memory_requests),
    }


def render_sidecars(meta: SidecarMeta) -> List[Dict[str, Any]]:
    """Return all sidecar containers for `meta`.

    The first container is always Envoy. The X-Ray daemon follows iff
    `meta.inject_xray_sidecar` is set.

    """
    sidecars = [render_envoy(meta)]
    if meta.inject_xray_sidecar:
        sidecars.append(render_xray_daemon(meta))

    logit.debug(f"Rendered sidecars {[_['name'] for _ in sidecars]}")
    return sidecars


def render_init(meta: InitMeta, constants: MeshConstants) -> Dict[str, Any]:
    """Return the init container that routes the pod traffic through Envoy."""
    _require({"container_image": meta.container_image}, "proxyinit")

    return {
        "name": "proxyinit",
        "image": meta.container_image,
        "securityContext": {"capabilities": {"add": ["NET_ADMIN"]}},
        "env": [
            _env("APPMESH_START_ENABLED", "1"),
            _env("APPMESH_IGNORE_UID", constants.proxy_uid),
            _env("APPMESH_ENVOY_INGRESS_PORT", constants.proxy_ingress_port),
            _env("APPMESH_ENVOY_EGRESS_PORT", constants.proxy_egress_port),
            _env("APPMESH_APP_PORTS", meta.ports),
            _env("APPMESH_EGRESS_IGNORED_IP", meta.ignored_ips),
            _env("APPMESH_EGRESS_IGNORED_PORTS", meta.egress_ignored_ports),
        ],
        "resources": _requests(meta.cpu_requests, meta.memory_requests),
    }


# -----------------------------------------------------------------------------
#                                   Tracing
# -----------------------------------------------------------------------------
def render_tracing_config_volume(kind: TracingKind) -> Dict[str, Any]:
    """Return the empty dir volume for the static Envoy configuration.

    Datadog and Jaeger share the same volume name because Envoy only reads a
    single `ENVOY_STATS_CONFIG_FILE` from the `envoy-tracing-config` mount.
    The volume is therefore identical for every `kind` of tracer.

    """
    return {"name": TRACING_VOLUME_NAME, "emptyDir": {}}


def envoy_tracing_config(kind: TracingKind, address: str, port: int) -> Dict[str, Any]:
    """Return the static Envoy configuration for the `kind` tracer."""
    if kind == TracingKind.DATADOG:
        cluster = "datadog_agent"
        tracer = {
            "name": "envoy.tracers.datadog",
            "config": {"collector_cluster": cluster, "service_name": "envoy"},
        }
    else:
        cluster = "jaeger"
        tracer = {
            "name": "envoy.tracers.zipkin",
            "config": {
                "collector_cluster": cluster,
                "collector_endpoint": "/api/v1/spans",
                "shared_span_context": False,
            },
        }

    endpoint = {"address": {"socket_address": {"address": address, "port_value": port}}}
    return {
        "tracing": {"http": tracer},
        "static_resources": {
            "clusters": [{
                "name": cluster,
                "connect_timeout": "1s",
                "type": "strict_dns",
                "lb_policy": "round_robin",
                "load_assignment": {
                    "cluster_name": cluster,
                    "endpoints": [{"lb_endpoints": [{"endpoint": endpoint}]}],
                },
            }],
        },
    }


def render_tracing_init_container(kind: TracingKind,
                                  address: str,
                                  port: str) -> Dict[str, Any]:
    """Return the init container that writes the Envoy tracing configuration.

    The init container appends the YAML configuration for the `kind` tracer
    to `STATS_CONFIG_FILE` in the shared tracing volume.

    Raises `RenderError` if the collector `address` or `port` is invalid.

    """
    name = f"inject-{kind.value}-config"
    _require({"address": address, "port": port}, name)
    try:
        port_value = int(port)
    except ValueError:
        raise RenderError(f"Cannot render <{name}>: invalid port <{port}>")
    if not 0 < port_value < 65536:
        raise RenderError(f"Cannot render <{name}>: invalid port <{port}>")

    config = yaml.dump(
        envoy_tracing_config(kind, address, port_value),
        Dumper=Dumper, default_flow_style=False, sort_keys=False,
    )
    # Quoted delimiter: the shell must write the configuration verbatim.
    script = (
        f"cat <<'EOF' >> {STATS_CONFIG_FILE}\n{config}EOF\n\n"
        f"cat {STATS_CONFIG_FILE}\n"
    )

    return {
        "command": ["sh", "-c", script],
        "image": TRACING_INIT_IMAGE,
        "imagePullPolicy": "IfNotPresent",
        "name": name,
        "volumeMounts": [
            {"mountPath": TRACING_MOUNT_PATH, "name": TRACING_VOLUME_NAME},
        ],
        "resources": {
            "limits": {"cpu": "100m", "memory": "64Mi"},
            "requests": {"cpu": "10m", "memory": "32Mi"},
        },
    }
