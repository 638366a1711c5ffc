"""Compose the JSON patch (RFC 6902) that injects the mesh sidecar into a pod.

The composer never inspects the pod itself. The `MutationRequest` tells it
which of the pod spec lists already exist, and it will then either create the
entire list or append to it.

"""
import json
import logging
from typing import Any, Dict, List, Tuple

import jsonpatch
import jsonpointer

from meshinject.dtypes import (
    ComposeError, InitMeta, MeshConstants, MutationRequest, PatchDocument,
    PatchOperation, RenderError, TracingKind,
)
from meshinject.sidecar import (
    render_init, render_sidecars, render_tracing_config_volume,
    render_tracing_init_container,
)

# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("meshinject")

# Image pull secret for the App Mesh images in ECR.
ECR_SECRET = {"name": "appmesh-ecr-secret"}


def spec_patches(target: str, fragments: List[Any], append: bool) -> PatchDocument:
    """Return the operations to add all `fragments` to `/spec/<target>`.

    If the list already exists (`append=True`) then return one operation per
    fragment to append it to the end of the list. Otherwise return a single
    operation that creates the list with all `fragments`.

    """
    if append:
        return [PatchOperation("add", f"/spec/{target}/-", _) for _ in fragments]
    return [PatchOperation("add", f"/spec/{target}", list(fragments))]


def annotation_path(key: str) -> str:
    """Return the JSON pointer to the annotation `key`, eg

    "appmesh.k8s.aws/ports" -> "/metadata/annotations/appmesh.k8s.aws~1ports"

    """
    return jsonpointer.JsonPointer.from_parts(["metadata", "annotations", key]).path


def annotation_patches(existing: Dict[str, str] | None,
                       new: Dict[str, str]) -> PatchDocument:
    """Return the operations to merge the `new` annotations into `existing`.

    The keys are processed in alphabetical order.

    If the pod has no annotations at all (`existing=None`) then the first key
    creates the annotation map and all subsequent ones are added to it.

    Otherwise, each key is added if it does not yet exist (or its value is
    empty) and replaced if it does. Keys whose value would not change still
    produce a `replace` operation.

    """
    keys = sorted(new)
    patches: PatchDocument = []

    # Create the annotation map with the first key.
    if existing is None:
        if not keys:
            return patches
        first, keys = keys[0], keys[1:]
        patches.append(
            PatchOperation("add", "/metadata/annotations", {first: new[first]})
        )
        existing = {}

    # Add or replace the remaining keys. This only ever consults the original
    # annotations, never the ones we have added here.
    for key in keys:
        op = "replace" if existing.get(key, "") != "" else "add"
        patches.append(PatchOperation(op, annotation_path(key), new[key]))
    return patches


def mesh_annotations(init: InitMeta, constants: MeshConstants) -> Dict[str, str]:
    """Return the annotations the App Mesh CNI plugin needs to route the pod."""
    c = constants
    return {
        c.egress_ignored_ips_key: init.ignored_ips,
        c.egress_ignored_ports_key: init.egress_ignored_ports,
        c.ports_key: init.ports,
        c.sidecar_inject_key: "enabled",

        # Fixed values of the current App Mesh runtime.
        c.ignored_uid_key: c.proxy_uid,
        c.proxy_egress_port_key: c.proxy_egress_port,
        c.proxy_ingress_port_key: c.proxy_ingress_port,
    }


def tracing_patches(kind: TracingKind, address: str, port: str) -> PatchDocument:
    """Return the operations to add the tracing volume and its init container.

    Both are always appended since the pod will have at least the volumes and
    init containers from earlier operations.

    """
    volume = render_tracing_config_volume(kind)
    init = render_tracing_init_container(kind, address, port)
    return spec_patches("volumes", [volume], True) + \
        spec_patches("initContainers", [init], True)


def compose(request: MutationRequest,
            constants: MeshConstants = MeshConstants()) -> PatchDocument:
    """Return all patch operations for `request`.

    Raises `ComposeError` if any fragment could not be rendered or the final
    document is not a valid JSON patch.

    """
    req, sidecar = request, request.sidecar
    patches: PatchDocument = []

    try:
        # The CNI plugin configures the pod traffic based on annotations and
        # does not need the proxy init container.
        if req.cni_annotation_mode_enabled:
            new = mesh_annotations(req.init, constants)
            patches += annotation_patches(req.existing_annotations, new)
        else:
            init = render_init(req.init, constants)
            patches += spec_patches("initContainers", [init], req.append_init_containers)

        # Envoy and, optionally, the X-Ray daemon.
        sidecars = render_sidecars(sidecar)
        patches += spec_patches("containers", sidecars, req.append_sidecar_containers)

        if req.has_image_pull_secret:
            patches += spec_patches(
                "imagePullSecrets", [dict(ECR_SECRET)], req.append_image_pull_secret
            )

        # Tracing backends, Datadog first.
        if sidecar.enable_datadog_tracing:
            patches += tracing_patches(
                TracingKind.DATADOG, sidecar.datadog_address, sidecar.datadog_port
            )
        if sidecar.enable_jaeger_tracing:
            patches += tracing_patches(
                TracingKind.JAEGER, sidecar.jaeger_address, sidecar.jaeger_port
            )
    except RenderError as err:
        raise ComposeError(f"Could not render fragment: {err}") from err

    # Sanity check: the result must be a valid JSON patch.
    try:
        jsonpatch.JsonPatch(as_dicts(patches))
    except (jsonpatch.JsonPatchException, jsonpointer.JsonPointerException) as err:
        raise ComposeError(f"Invalid JSON patch: {err}") from err

    logit.debug(f"Composed {len(patches)} patch operations")
    return patches


def as_dicts(patches: PatchDocument) -> List[Dict[str, Any]]:
    return [dict(_._asdict()) for _ in patches]


def serialise(patches: PatchDocument) -> bytes:
    """Return `patches` as a JSON array."""
    return json.dumps(as_dicts(patches)).encode("utf8")


def make_patch(request: MutationRequest,
               constants: MeshConstants = MeshConstants()) -> Tuple[bytes, bool]:
    """Return the serialised JSON patch for `request`.

    This is the entry point for the admission webhook. It will never return
    a partial patch: either all operations or none.

    Returns:
        bytes, err

    """
    try:
        patches = compose(request, constants)
    except ComposeError as err:
        logit.error(f"Cannot create sidecar patch: {err}")
        return (b"", True)

    data = serialise(patches)
    logit.debug(f"Patches = {data.decode('utf8')}")
    return (data, False)
