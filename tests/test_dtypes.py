import pydantic
import pytest

from meshinject.dtypes import (
    ComposeError, Config, MeshConstants, MutationRequest, PatchOperation,
    RenderError, SidecarMeta, TracerEndpoint, TracingKind, VolumeMount,
)


class TestDescriptors:
    def test_sidecar_meta_defaults(self):
        meta = SidecarMeta()
        assert meta.preview == "0"
        assert meta.service_account_volume_mount is None
        assert meta.tracing_enabled is False

        # Either tracer enables tracing.
        assert SidecarMeta(enable_jaeger_tracing=True).tracing_enabled
        assert SidecarMeta(enable_datadog_tracing=True).tracing_enabled

    def test_descriptors_immutable(self):
        """Descriptors must not change once constructed."""
        meta = SidecarMeta()
        with pytest.raises(pydantic.ValidationError):
            meta.log_level = "debug"

        req = MutationRequest()
        with pytest.raises(pydantic.ValidationError):
            req.has_image_pull_secret = True

    def test_volume_mount(self):
        mount = VolumeMount(name="sa", mount_path="/foo")
        assert mount.read_only is False

        with pytest.raises(pydantic.ValidationError):
            VolumeMount(name="", mount_path="/foo")

    def test_mutation_request_annotations(self):
        """Absent annotations must remain distinguishable from empty ones."""
        assert MutationRequest().existing_annotations is None
        assert MutationRequest(existing_annotations={}).existing_annotations == {}

    def test_mesh_constants(self):
        consts = MeshConstants()
        assert consts.proxy_uid == "1337"
        assert consts.proxy_egress_port == "15001"
        assert consts.proxy_ingress_port == "15000"
        assert consts.sidecar_inject_key == "appmesh.k8s.aws/sidecarInjectorWebhook"

        with pytest.raises(pydantic.ValidationError):
            MeshConstants(foo="bar")

    def test_patch_operation(self):
        op = PatchOperation("add", "/spec/containers/-", {"name": "envoy"})
        assert op._asdict() == {
            "op": "add", "path": "/spec/containers/-", "value": {"name": "envoy"},
        }

    def test_tracing_kind(self):
        assert TracingKind("datadog") is TracingKind.DATADOG
        assert TracingKind.JAEGER.value == "jaeger"

    def test_errors(self):
        assert issubclass(RenderError, ValueError)
        assert not issubclass(ComposeError, RenderError)


class TestConfig:
    def test_tracer_endpoint_port(self):
        """Ports may be specified as integers."""
        assert TracerEndpoint(port=8126).port == "8126"
        assert TracerEndpoint(port="9411").port == "9411"

    def test_config_required(self):
        """Mesh, region and images have no defaults."""
        with pytest.raises(pydantic.ValidationError):
            Config()

        with pytest.raises(pydantic.ValidationError):
            Config.model_validate({
                "mesh_name": "", "region": "us-west-2",
                "sidecar": {"image": "envoy"}, "init": {"image": "init"},
            })

        cfg = Config.model_validate({
            "mesh_name": "global", "region": "us-west-2",
            "sidecar": {"image": "envoy"}, "init": {"image": "init"},
        })
        assert cfg.inject_default is True
        assert cfg.ecr_secret is False
        assert cfg.tracing.datadog.enabled is False
        assert cfg.constants == MeshConstants()
