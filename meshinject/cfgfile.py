"""Load the injector configuration.

The configuration holds the cluster wide defaults, eg the sidecar images and
tracing backends. Individual pods may override some of them via annotations
(see `podmeta.py`).

"""
import logging
from pathlib import Path
from types import SimpleNamespace
from typing import Tuple

import pydantic
import yaml

from meshinject.dtypes import Config, InitDefaults, SidecarDefaults

# Convenience.
logit = logging.getLogger("meshinject")


def load(fname: Path) -> Tuple[Config, bool]:
    """Parse the injector configuration file `fname` and return it as a `Config`."""
    err_resp = Config(
        mesh_name="invalid", region="invalid",
        sidecar=SidecarDefaults(image="invalid"),
        init=InitDefaults(image="invalid"),
    ), True

    # Load the configuration file.
    try:
        raw = yaml.safe_load(Path(fname).read_text())
    except FileNotFoundError as e:
        logit.error(f"Cannot load config file <{fname}>: {e.args[1]}")
        return err_resp
    except yaml.YAMLError as exc:
        # Special case: parser supplied location information.
        mark = getattr(exc, "problem_mark", SimpleNamespace(line=-1, column=-1))
        line, col = (mark.line + 1, mark.column + 1)
        logit.error(f"YAML format error in {fname}: Line {line} Column {col}")
        return err_resp

    # Parse the configuration into `Config` structure.
    try:
        cfg = Config.model_validate(raw)
    except (pydantic.ValidationError, TypeError) as e:
        logit.error(f"Schema is invalid: {e}")
        return err_resp

    return cfg, False
