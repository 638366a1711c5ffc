"""Setup YAML to use fast loaders if possible, and fold multi-line strings.

Use the CSafeLoader/CSafeDumper from the LibYAML C library if they are
available on the host, or fall back to the slow Python loader/dumper if not.

The Dumper uses the "|" syntax for multi-line strings. This keeps the shell
scripts of the tracing init containers readable when a patch is printed as
YAML.

Usage:

   from meshinject.yaml_io import Loader, Dumper

"""
import logging

# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("meshinject")

# ----------------------------------------------------------------------------
# NOTE: this import is excluded from the coverage report since it depends on
#       whether or not LibYAML exists on the host.
# ----------------------------------------------------------------------------
try:                                 # codecov-skip
    from yaml import (  # type: ignore
        CSafeDumper as Dumper, CSafeLoader as Loader,
    )
    logit.debug("Using LibYAML C library")
except ImportError:                  # codecov-skip
    from yaml import SafeDumper as Dumper, SafeLoader as Loader  # type: ignore
    logit.debug("Using Python YAML library")


def fold_yaml_strings(dumper, data):
    """Dump multi-line strings with the `|` notation."""
    if '\n' in data:
        return dumper.represent_scalar('tag:yaml.org,2002:str', data, style='|')
    return dumper.represent_scalar('tag:yaml.org,2002:str', data)


# Install the new string converter into the Dumper.
Dumper.add_representer(str, fold_yaml_strings)

assert Loader is not None
assert Dumper is not None
