import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

import colorama
import yaml
from colorlog import ColoredFormatter

import meshinject.cfgfile
import meshinject.patch
import meshinject.podmeta as podmeta
from meshinject import DEFAULT_CONFIG_FILE, __version__
from meshinject.dtypes import Config
from meshinject.yaml_io import Dumper, Loader

# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("meshinject")


def setup_logging(log_level: int) -> None:
    """Configure logging at `log_level`.

    Level 0: ERROR
    Level 1: WARNING
    Level 2: INFO
    Level >=3: DEBUG

    Inputs:
        log_level: int

    Returns:
        None

    """
    # Pick the correct log level.
    if log_level == 0:
        level = "ERROR"
    elif log_level == 1:
        level = "WARNING"
    elif log_level == 2:
        level = "INFO"
    else:
        level = "DEBUG"

    # Create logger.
    logger = logging.getLogger("meshinject")
    logger.setLevel(level)

    # Configure stdout handler.
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(
        ColoredFormatter(
            "%(log_color)s%(levelname)s%(reset)s - "
            "%(filename)s:%(funcName)s:%(lineno)d - %(message)s"
        )
    )

    # Attach stdout handlers to the `meshinject` logger.
    logger.addHandler(handler)


def parse_commandline_args():
    """Return parsed command line."""
    # A dummy top level parser that will become the parent for all sub-parsers
    # to share all its arguments.
    parent = argparse.ArgumentParser(
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        prog="meshinject",
    )
    parent.add_argument(
        "-v", "--verbosity", action="count", default=0,
        help="Log level (-v: WARNING -vv: INFO -vvv: DEBUG)"
    )
    parent.add_argument(
        "-c", "--config", type=str, default="", dest="configfile",
        help="Read configuration from this file"
    )

    # The primary parser for the top level options (eg PATCH, VERSION, ...).
    parser = argparse.ArgumentParser(add_help=True, prog="meshinject")
    subparsers = parser.add_subparsers(
        help='Mode', dest='parser', metavar="ACTION",
        title="Operation", required=True,
    )

    # Sub-command PATCH.
    parser_patch = subparsers.add_parser(
        'patch', help="Print the JSON patch for a pod manifest", parents=[parent]
    )
    parser_patch.add_argument(
        "pod", type=str, metavar="pod.yaml", help="Pod manifest (YAML or JSON)",
    )
    parser_patch.add_argument(
        "--show", action="store_true",
        help="Print a human readable summary instead of the raw JSON patch",
    )

    # Sub-command VERSION.
    subparsers.add_parser(
        'version', help="Show version and exit", parents=[parent]
    )

    # Sub-command CONFIG.
    parser_config = subparsers.add_parser(
        'config', help="Create meshinject.yaml (works with --folder)", parents=[parent]
    )
    parser_config.add_argument(
        "--folder", type=str, metavar="path", default=None,
        help="Target folder (defaults to ./)",
    )

    return parser.parse_args()


def load_pod(fname: Path) -> Tuple[dict, bool]:
    """Return the pod manifest stored in `fname`."""
    try:
        pod = yaml.load(Path(fname).read_text(), Loader=Loader)
    except FileNotFoundError:
        logit.error(f"Cannot find pod manifest <{fname}>")
        return ({}, True)
    except yaml.YAMLError as err:
        logit.error(f"Cannot parse pod manifest <{fname}>: {err}")
        return ({}, True)

    if not isinstance(pod, dict) or pod.get("kind", "Pod") != "Pod":
        logit.error(f"<{fname}> does not contain a pod manifest")
        return ({}, True)
    return (pod, False)


def show_patch(patches: List[Dict[str, Any]]) -> bool:
    """Print human readable version of `patches` to terminal."""
    # Terminal colours for convenience.
    cAdd = colorama.Fore.GREEN
    cMod = colorama.Fore.YELLOW + colorama.Style.BRIGHT
    cReset = colorama.Fore.RESET + colorama.Style.RESET_ALL

    n_add, n_mod = 0, 0
    for op in patches:
        colour = cAdd if op["op"] == "add" else cMod

        # Show the value as YAML below its path.
        txt = yaml.dump(op["value"], Dumper=Dumper, default_flow_style=False)
        lines = [f"    {colour}{line}{cReset}" for line in txt.splitlines()]
        lines.insert(0, colour + f"{op['op'].capitalize()} {op['path']}" + cReset)
        print(str.join('\n', lines) + '\n')

        if op["op"] == "add":
            n_add += 1
        else:
            n_mod += 1

    print("-" * 80)
    print("Patch: " +
          cAdd + f"{n_add:,} to add, " +
          cMod + f"{n_mod:,} to replace." + cReset + "\n")
    return False


def inject(cfg: Config, fname: Path, show: bool) -> bool:
    """Print the patch that injects the sidecar into the pod in `fname`."""
    pod, err = load_pod(fname)
    if err:
        return True

    inject_pod, err = podmeta.should_inject(cfg, pod)
    if err:
        return True

    # An empty patch leaves the pod untouched.
    if not inject_pod:
        logit.info(f"Sidecar injection disabled for <{fname}>")
        print("[]")
        return False

    request, err = podmeta.make_request(cfg, pod)
    if err:
        return True

    data, err = meshinject.patch.make_patch(request, cfg.constants)
    if err:
        return True

    if show:
        show_patch(json.loads(data))
    else:
        print(data.decode("utf8"))
    return False


def main() -> int:
    param = parse_commandline_args()

    # Print version information and quit.
    if param.parser == "version":
        print(__version__)
        return 0

    # Create a default "meshinject.yaml" in the current folder and quit.
    if param.parser == "config":
        fname = Path(param.folder or ".") / "meshinject.yaml"
        fname.parent.mkdir(parents=True, exist_ok=True)
        fname.write_text(DEFAULT_CONFIG_FILE.read_text())
        print(
            f"Created configuration file <{fname}>.\n"
            "Please open the file in an editor and adjust the values, most notably "
            "`mesh_name`, `region` and the container images."
        )
        return 0

    # Initialise logging.
    setup_logging(param.verbosity)

    # Load the default configuration unless the user specified an explicit one.
    cfg_file = Path(param.configfile) if param.configfile else DEFAULT_CONFIG_FILE
    logit.info(f"Loading configuration file <{cfg_file}>")
    cfg, err = meshinject.cfgfile.load(cfg_file)
    if err:
        return 1

    # Do what the user asked us to do.
    if param.parser == "patch":
        err = inject(cfg, Path(param.pod), param.show)
    else:
        logit.error(f"Unknown command <{param.parser}>")
        return 1

    # Return error code.
    return 1 if err else 0
