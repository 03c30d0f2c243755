import argparse
import logging
import os
import sys

from core.exceptions import ElasticProjectionError
from geometry.construction import build_globe_mesh
from geometry.geom_io import (
    load_data,
    load_grid,
    load_mesh_json,
    load_parameters,
    save_mesh_csv,
    save_mesh_json,
)
from runtime.logging_config import setup_logging
from runtime.minimizer import MapOptimizer

logger = logging.getLogger("elastic_projection")


def resolve_config_path(path: str) -> str:
    """Return a valid parameter file path, allowing the extension to be left off."""
    if os.path.isfile(path):
        return path
    for ext in (".yaml", ".yml", ".json"):
        if os.path.isfile(path + ext):
            return path + ext
    raise FileNotFoundError(f"Cannot find file '{path}' or '{path}.yaml/.json'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Search for an optimal map projection by relaxing an elastic sheet"
    )
    parser.add_argument("-i", "--input", help="Parameter file (YAML or JSON)")
    parser.add_argument(
        "--resume", default=None, help="Continue from a mesh state saved with --state"
    )
    parser.add_argument(
        "-o", "--output", default=None, help="Write the final mesh as CSV rows"
    )
    parser.add_argument(
        "--state", default=None, help="Write the final mesh state as JSON"
    )
    parser.add_argument(
        "--compact-output-json",
        action="store_true",
        help="Write the JSON state in compact (single-line) form.",
    )
    parser.add_argument(
        "--resolution", type=int, default=None, help="Override the mesh resolution"
    )
    parser.add_argument(
        "--init", default=None, help="Override the initial projection (e.g. hammer)"
    )
    parser.add_argument("--weights", default=None, help="Cell weight grid (.npy/.csv/.txt)")
    parser.add_argument("--scales", default=None, help="Cell scale grid (.npy/.csv/.txt)")
    parser.add_argument(
        "--criteria-weights",
        action="append",
        default=None,
        metavar="PATH",
        help="Also report distortion weighted by this grid (repeatable)",
    )
    parser.add_argument(
        "--max-steps", type=int, default=None, help="Stop after this many iterations"
    )
    parser.add_argument(
        "--plot-save",
        default=None,
        help="Save a picture of the final map to PATH.",
    )
    parser.add_argument("--log", default=None, help="Optional log file")
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Suppress console output"
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable verbose debug logging"
    )
    return parser


def _build_mesh(args, data):
    if args.resume:
        return load_mesh_json(args.resume)

    params = load_parameters(data)
    overrides = {}
    if args.resolution is not None:
        overrides["resolution"] = args.resolution
    if args.init is not None:
        overrides["initial_condition"] = args.init
    if overrides:
        params = params.updated(**overrides)

    weights_path = args.weights or data.get("weights")
    scales_path = args.scales or data.get("scales")
    weights = load_grid(weights_path, params.resolution, "weights") if weights_path else None
    scales = load_grid(scales_path, params.resolution, "scales") if scales_path else None
    return build_globe_mesh(params, weights=weights, scales=scales)


def _criteria_weights(args, data, resolution: int):
    """Load the extra criteria weightings as (label, grid) pairs, named by file."""
    paths = args.criteria_weights or data.get("criteria_weights") or []
    if isinstance(paths, str):
        paths = [paths]
    return [
        (
            os.path.splitext(os.path.basename(str(path)))[0],
            load_grid(path, resolution, "criteria_weights"),
        )
        for path in paths
    ]


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    global logger
    logger = setup_logging(args.log, quiet=args.quiet, debug=args.debug)

    try:
        data = load_data(resolve_config_path(args.input)) if args.input else {}
        mesh = _build_mesh(args, data)
        criteria_weights = _criteria_weights(
            args, data, mesh.global_parameters.resolution
        )
    except (OSError, ElasticProjectionError) as exc:
        logger.error("%s", exc)
        return 1

    optimizer = MapOptimizer(
        mesh, max_steps=args.max_steps, criteria_weights=criteria_weights
    )
    optimizer.start()
    try:
        try:
            while optimizer.is_running():
                optimizer.join(timeout=0.5)
        except KeyboardInterrupt:
            logger.info("Interrupted; finishing the current step.")
            optimizer.cancel()
        optimizer.join()
    except ElasticProjectionError as exc:
        logger.error("Optimisation failed: %s", exc)
        return 1

    if args.output:
        save_mesh_csv(mesh, args.output)
    if args.state:
        save_mesh_json(mesh, args.state, compact=args.compact_output_json)
    if args.plot_save:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        from visualization.plotting import plot_map

        plot_map(mesh, show=False, no_axes=True)
        plt.gcf().savefig(args.plot_save, bbox_inches="tight")
        logger.info("Saved map picture to %s", args.plot_save)
    if not (args.output or args.state):
        logger.info("Optimisation complete. No output file written.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
