"""Inspect a pod manifest and describe the mutation the injector must apply.

This is the bridge between the admission webhook, which receives raw pod
manifests, and the composer in `patch.py`, which only ever sees a
`MutationRequest`.

"""
import logging
from typing import Any, Dict, List, Tuple

import pydantic

from meshinject.dtypes import (
    SERVICE_ACCOUNT_MOUNT_PATH, Config, InitMeta, MutationRequest, SidecarMeta,
    VolumeMount,
)

# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("meshinject")

# Per pod overrides of the injector configuration.
MESH_ANNOTATION = "appmesh.k8s.aws/mesh"
VIRTUAL_NODE_ANNOTATION = "appmesh.k8s.aws/virtualNode"
CPU_REQUESTS_ANNOTATION = "appmesh.k8s.aws/cpuRequests"
MEMORY_REQUESTS_ANNOTATION = "appmesh.k8s.aws/memoryRequests"
PREVIEW_ANNOTATION = "appmesh.k8s.aws/preview"


def should_inject(cfg: Config, pod: dict) -> Tuple[bool, bool]:
    """Return True if the sidecar should be injected into `pod`.

    The `sidecarInjectorWebhook` annotation always wins. Without it, the
    `cfg.inject_default` flag decides. Pods that already have an Envoy
    container are never injected (again).

    Returns:
        bool, err

    """
    try:
        annotations = (pod.get("metadata") or {}).get("annotations") or {}
        containers = (pod.get("spec") or {}).get("containers") or []
        assert isinstance(annotations, dict) and isinstance(containers, list)
        has_envoy = any(_.get("name") == "envoy" for _ in containers)
        value = annotations.get(cfg.constants.sidecar_inject_key, "")
    except (TypeError, AttributeError, AssertionError):
        logit.error("Pod manifest has malformed annotations or containers")
        return False, True

    if has_envoy:
        return False, False

    if value == "enabled":
        return True, False
    if value == "disabled":
        return False, False
    return cfg.inject_default, False



def find_service_account_mount(containers: List[dict]) -> VolumeMount | None:
    """Return the service account token mount of the first app container that has one."""
    for container in containers:
        for mount in container.get("volumeMounts") or []:
            if mount.get("mountPath") == SERVICE_ACCOUNT_MOUNT_PATH:
                return VolumeMount(
                    name=mount["name"],
                    mount_path=mount["mountPath"],
                    read_only=mount.get("readOnly", False),
                )
    return None


def container_ports(containers: List[dict]) -> str:
    """Return the comma separated list of all container ports, eg "80,443"."""
    ports = [
        str(port["containerPort"])
        for container in containers
        for port in container.get("ports") or []
    ]
    return ",".join(ports)


def virtual_node_name(pod: dict) -> str:
    """Return the virtual node name of `pod`.

    Defaults to "<name>-<namespace>" unless the pod specifies the
    `appmesh.k8s.aws/virtualNode` annotation. Pods created by a controller
    usually only have a `generateName`, eg "podinfo-7c8d5b9f4-".

    """
    meta = pod.get("metadata") or {}
    annotations = meta.get("annotations") or {}
    if VIRTUAL_NODE_ANNOTATION in annotations:
        return annotations[VIRTUAL_NODE_ANNOTATION]

    name = meta.get("name") or meta.get("generateName", "").rstrip("-")
    namespace = meta.get("namespace") or "default"
    return f"{name}-{namespace}"


def make_request(cfg: Config, pod: dict) -> Tuple[MutationRequest, bool]:
    """Return the `MutationRequest` to inject the sidecar into `pod`.

    Inputs:
        cfg: Config
            Injector configuration.
        pod: dict
            The pod manifest from the admission request.

    Returns:
        MutationRequest, err

    """
    err_resp = MutationRequest(), True

    try:
        meta = pod.get("metadata") or {}
        spec: Dict[str, Any] = pod["spec"]
        containers = spec["containers"]
        assert isinstance(meta, dict)
        assert isinstance(containers, list) and len(containers) > 0
    except (KeyError, TypeError, AttributeError, AssertionError):
        logit.error("Pod manifest has no containers")
        return err_resp

    consts = cfg.constants
    tracing = cfg.tracing

    try:
        # NOTE: `None` means the pod has no annotations at all.
        annotations: Dict[str, str] | None = meta.get("annotations")
        ann = annotations or {}
        assert isinstance(ann, dict)
        preview = ann.get(PREVIEW_ANNOTATION, "enabled" if cfg.preview else "")

        init = InitMeta(
            container_image=cfg.init.image,
            ports=ann.get(consts.ports_key, container_ports(containers)),
            egress_ignored_ports=ann.get(
                consts.egress_ignored_ports_key, cfg.init.egress_ignored_ports
            ),
            ignored_ips=cfg.init.ignored_ips,
            cpu_requests=cfg.init.cpu_requests,
            memory_requests=cfg.init.memory_requests,
        )

        sidecar = SidecarMeta(
            container_image=cfg.sidecar.image,
            mesh_name=ann.get(MESH_ANNOTATION, cfg.mesh_name),
            virtual_node_name=virtual_node_name(pod),
            preview="1" if preview == "enabled" else "0",
            log_level=cfg.log_level,
            region=cfg.region,
            cpu_requests=ann.get(CPU_REQUESTS_ANNOTATION, cfg.sidecar.cpu_requests),
            memory_requests=ann.get(
                MEMORY_REQUESTS_ANNOTATION, cfg.sidecar.memory_requests
            ),
            enable_jaeger_tracing=tracing.jaeger.enabled,
            jaeger_address=tracing.jaeger.address,
            jaeger_port=tracing.jaeger.port,
            enable_datadog_tracing=tracing.datadog.enabled,
            datadog_address=tracing.datadog.address,
            datadog_port=tracing.datadog.port,
            inject_xray_sidecar=tracing.inject_xray_sidecar,
            enable_stats_tags=tracing.enable_stats_tags,
            enable_stats_d=tracing.enable_stats_d,
            service_account_volume_mount=find_service_account_mount(containers),
        )

        req = MutationRequest(
            cni_annotation_mode_enabled=ann.get(consts.cni_key) == "enabled",
            append_init_containers=len(spec.get("initContainers") or []) > 0,
            append_sidecar_containers=True,
            append_image_pull_secret=len(spec.get("imagePullSecrets") or []) > 0,
            has_image_pull_secret=cfg.ecr_secret,
            existing_annotations=annotations,
            init=init,
            sidecar=sidecar,
        )
    except (pydantic.ValidationError, KeyError, TypeError,
            AttributeError, AssertionError) as err:
        logit.error(f"Cannot describe the mutation for pod <{meta.get('name')}>: {err}")
        return err_resp

    return req, False
