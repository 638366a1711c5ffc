import importlib.resources
from pathlib import Path

from . import patch
from .cfgfile import load

__version__ = '0.3.0'

# ---------------------------------------------------------------------------
# Global Runtime Constants
# ---------------------------------------------------------------------------
DEFAULT_CONFIG_FILE = Path(
    str(importlib.resources.files("meshinject.resources") / "defaultconfig.yaml")
)

# The injector sources all its defaults from this configuration file. Users
# can supply their own via the `--config` command line argument.
DEFAULT_CONFIG, err = load(DEFAULT_CONFIG_FILE)
assert not err

# ---------------------------------------------------------------------------
# Expose the primary API for convenience.
# ---------------------------------------------------------------------------
compose = patch.compose
make_patch = patch.make_patch
