from pathlib import Path

import yaml

import meshinject
import meshinject.cfgfile as cfgfile
from meshinject.dtypes import Config, MeshConstants

TEST_CONFIG_FNAME = Path(__file__).parent / "support/config.yaml"


class TestLoadConfig:
    def test_load(self):
        """Load and parse configuration file."""
        cfg, err = cfgfile.load(TEST_CONFIG_FNAME)
        assert not err and isinstance(cfg, Config)

        assert cfg.mesh_name == "global"
        assert cfg.region == "us-west-2"
        assert cfg.log_level == "debug"
        assert cfg.ecr_secret is True
        assert cfg.sidecar.cpu_requests == "100m"
        assert cfg.init.egress_ignored_ports == "22"

        # YAML integers must become strings.
        assert cfg.tracing.datadog.port == "8126"
        assert cfg.tracing.jaeger.port == "9411"
        assert cfg.constants == MeshConstants()

    def test_load_default_config(self):
        """The configuration that ships with the package must be valid."""
        cfg, err = cfgfile.load(meshinject.DEFAULT_CONFIG_FILE)
        assert not err
        assert cfg == meshinject.DEFAULT_CONFIG
        assert cfg.tracing.jaeger.enabled is False

    def test_load_constants(self, tmp_path):
        """Users may override the mesh constants."""
        ref = yaml.safe_load(TEST_CONFIG_FNAME.read_text())
        ref["constants"] = {"proxy_uid": "1000"}
        fname = tmp_path / "config.yaml"
        fname.write_text(yaml.dump(ref))

        cfg, err = cfgfile.load(fname)
        assert not err
        assert cfg.constants.proxy_uid == "1000"
        assert cfg.constants.proxy_egress_port == "15001"

    def test_load_err(self, tmp_path):
        """Gracefully handle missing file, corrupt content etc."""
        # Must gracefully handle a missing configuration file.
        fname = tmp_path / "does-not-exist.yaml"
        _, err = cfgfile.load(fname)
        assert err

        # YAML error.
        fname = tmp_path / "corrupt-yaml.yaml"
        fname.write_text("[foo")
        _, err = cfgfile.load(fname)
        assert err

        # Does not match the definition of `dtypes.Config`.
        fname = tmp_path / "invalid-pydantic-schema.yaml"
        fname.write_text("foo: bar")
        _, err = cfgfile.load(fname)
        assert err

        # YAML file is valid but empty.
        fname.write_text("")
        _, err = cfgfile.load(fname)
        assert err

        # Unknown key in a nested section.
        ref = yaml.safe_load(TEST_CONFIG_FNAME.read_text())
        ref["tracing"]["zipkin"] = {"enabled": True}
        fout = tmp_path / "corrupt.yaml"
        fout.write_text(yaml.dump(ref))
        _, err = cfgfile.load(fout)
        assert err

        # Missing sidecar image.
        ref = yaml.safe_load(TEST_CONFIG_FNAME.read_text())
        del ref["sidecar"]["image"]
        fout.write_text(yaml.dump(ref))
        _, err = cfgfile.load(fout)
        assert err
