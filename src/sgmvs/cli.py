"""Command-line interface for SGMVS."""

import argparse
import logging
import sys
from pathlib import Path

from sgmvs.config import DepthMapConfig, QualityPreset

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool = False) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Silence noisy third-party loggers
    for name in ("matplotlib", "PIL"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _load_config(config_path: Path | None) -> DepthMapConfig:
    if config_path is None:
        return DepthMapConfig()
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        sys.exit(1)
    try:
        return DepthMapConfig.from_yaml(config_path)
    except ValueError as e:
        print(f"Error: Failed to load config: {e}", file=sys.stderr)
        sys.exit(1)


def init_config(config_path: Path, preset: str | None = None) -> DepthMapConfig:
    """Write a default configuration YAML, optionally with a quality preset.

    Args:
        config_path: Path where the config YAML will be saved.
        preset: Quality preset name ("fast", "balanced", "quality").

    Returns:
        The written configuration.
    """
    config = DepthMapConfig()
    if preset is not None:
        config.apply_preset(QualityPreset(preset))
    config.to_yaml(config_path)
    print(f"[OK] Configuration saved to: {config_path}")
    return config


def render_command(input_path: Path, output_dir: Path | None = None) -> list[Path]:
    """Render depth and similarity PNGs for saved depth maps.

    Args:
        input_path: A ``.npz`` depth map, or a directory of them.
        output_dir: Output directory. Defaults to the input's directory.

    Returns:
        Paths of the images written.
    """
    from sgmvs.dense import load_depth_sim_map
    from sgmvs.visualization import render_all_depth_maps

    if input_path.is_dir():
        files = sorted(input_path.glob("*.npz"))
        default_dir = input_path
    elif input_path.is_file():
        files = [input_path]
        default_dir = input_path.parent
    else:
        print(f"Error: Input not found: {input_path}", file=sys.stderr)
        sys.exit(1)

    if not files:
        print(f"Error: No .npz files found in {input_path}", file=sys.stderr)
        sys.exit(1)

    maps = {}
    for path in files:
        try:
            maps[path.stem] = load_depth_sim_map(path)
        except (KeyError, ValueError, OSError) as e:
            logger.warning("Skipping %s: %s", path.name, e)

    return render_all_depth_maps(maps, output_dir or default_dir)


def demo_command(
    output_dir: Path,
    config_path: Path | None = None,
    device: str | None = None,
) -> None:
    """Estimate the depth map of a synthetic textured plane and save it.

    Args:
        output_dir: Directory for the maps and their renderings.
        config_path: Optional config YAML.
        device: Optional device override (replaces config.runtime.device).
    """
    from sgmvs.dense import generate_depth_hypotheses
    from sgmvs.device import DeviceContext
    from sgmvs.pipeline import estimate_depth_map
    from sgmvs.synthetic import make_stereo_plane_scene
    from sgmvs.visualization import render_all_depth_maps

    config = _load_config(config_path)
    if device is not None:
        config.runtime.device = device
    ctx = DeviceContext.from_config(config.runtime)

    num_levels = max(config.sgm.scale_level, config.refine.scale_level) + 1
    plane_depth = 2.0
    reference, targets = make_stereo_plane_scene(
        plane_depth=plane_depth,
        num_levels=num_levels,
        min_depth=plane_depth * 0.8,
        device=ctx.device,
    )
    depths = generate_depth_hypotheses(
        plane_depth * 0.8, plane_depth * 1.2, 41, device=ctx.device
    )

    result = estimate_depth_map(reference, targets, depths, config, ctx=ctx)
    result.save(output_dir, name=reference.name)

    maps = {"sgm": result.sgm}
    if result.optimized is not None:
        maps["optimized"] = result.optimized
    render_all_depth_maps(maps, output_dir)

    final = result.final
    valid = final.valid_mask()
    if valid.any():
        error = (final.depth[valid] - plane_depth).abs()
        logger.info(
            "Demo depth error: median %.4f, max %.4f (plane at %.2f)",
            float(error.median()),
            float(error.max()),
            plane_depth,
        )


def main() -> None:
    """Main entry point for the SGMVS CLI."""
    parser = argparse.ArgumentParser(
        prog="sgmvs",
        description="Multi-view depth map estimation with semi-global matching.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init subcommand
    init_parser = subparsers.add_parser(
        "init",
        help="Write a default config YAML",
    )
    init_parser.add_argument(
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to output config YAML file (default: config.yaml)",
    )
    init_parser.add_argument(
        "--preset",
        type=str,
        choices=[p.value for p in QualityPreset],
        default=None,
        help="Quality preset to apply",
    )

    # render subcommand
    render_parser = subparsers.add_parser(
        "render",
        help="Render saved depth maps to PNG",
    )
    render_parser.add_argument(
        "input",
        type=Path,
        help="Depth map .npz file or directory of them",
    )
    render_parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory (defaults to the input's directory)",
    )
    render_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    # demo subcommand
    demo_parser = subparsers.add_parser(
        "demo",
        help="Run the pipeline on a synthetic plane scene",
    )
    demo_parser.add_argument(
        "--output-dir",
        type=Path,
        required=True,
        help="Output directory for maps and images",
    )
    demo_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config YAML file",
    )
    demo_parser.add_argument(
        "--device",
        type=str,
        default=None,
        help="Override device (e.g., 'cpu' or 'cuda')",
    )
    demo_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Dispatch
    if args.command == "init":
        init_config(config_path=args.config, preset=args.preset)
    elif args.command == "render":
        _configure_logging(args.verbose)
        render_command(input_path=args.input, output_dir=args.output_dir)
    elif args.command == "demo":
        _configure_logging(args.verbose)
        demo_command(
            output_dir=args.output_dir,
            config_path=args.config,
            device=args.device,
        )
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
