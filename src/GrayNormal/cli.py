"""Command-line interface for the heightmap-to-normal converter."""

import argparse
import logging
import os
import sys

from . import __version__
from .config import MAX_WORKERS, PipelineConfig, VALID_TASK_ORDERS
from .core import setup_logging
from .errors import BatchAbortedError, DimensionMismatchError, UsageError

logger = logging.getLogger("gray_normal")


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that exits with status 1 on bad arguments."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser (exposed for tests and docs)."""
    parser = _ArgumentParser(
        prog="graynormal",
        description="Convert 8-bit grayscale heightmaps into tangent-space normal maps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  graynormal rock.png
  graynormal -s 8 -d out/ textures/*.png
  graynormal -t textures/*.png
  graynormal -J terrain_normals.png layer1.png layer2.png layer3.png
  graynormal --generate-config -c graynormal.yaml
        """
    )
    parser.add_argument("inputs", nargs="*", metavar="FILE",
                        help="Input heightmap image(s)")
    parser.add_argument("-s", "--scale", type=float,
                        help="Gradient scale/strength (default 20)")
    parser.add_argument("-d", "--output-dir",
                        help="Output directory (default: current directory)")
    parser.add_argument("-j", "--jobs", type=int,
                        help="Number of worker threads")
    parser.add_argument("-t", "--threads", action="store_true",
                        help="Use one worker thread per hardware thread (at most 256)")
    parser.add_argument("-J", "--merge", metavar="NAME",
                        help="Average all inputs and write a single normal map NAME")
    parser.add_argument("-c", "--config", help="Path to config YAML")
    parser.add_argument("--continue-on-error", action="store_true",
                        help="Keep going when a file fails and report all failures at the end")
    parser.add_argument("--order", choices=list(VALID_TASK_ORDERS),
                        help="Worker scheduling order (default fifo)")
    parser.add_argument("--legacy-merge-rounding", action="store_true",
                        help="Truncate each input's share before summing in merge mode")
    parser.add_argument("--no-progress", action="store_true",
                        help="Disable the progress bar")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--log-file", help="Also write log output to this file")
    parser.add_argument("--generate-config", action="store_true",
                        help="Write a default config YAML (to --config or config.yaml)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _apply_overrides(config: PipelineConfig, args) -> None:
    if args.scale is not None:
        config.normal.scale = args.scale
    if args.output_dir:
        config.output_dir = args.output_dir
    if args.jobs is not None:
        config.workers = args.jobs
    if args.threads:
        config.workers = min(os.cpu_count() or 1, MAX_WORKERS)
    if args.merge:
        config.merge.output_name = args.merge
    if args.continue_on_error:
        config.fail_fast = False
    if args.order:
        config.task_order = args.order
    if args.legacy_merge_rounding:
        config.merge.rounding = "legacy"
    if args.no_progress:
        config.show_progress = False
    if args.log_level:
        config.log_level = args.log_level
    if args.log_file:
        config.log_file = args.log_file


def main(argv=None):
    """Parse CLI arguments, run the batch, and exit with its status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        config = PipelineConfig()
        dest = args.config or "config.yaml"
        if os.path.isdir(dest):
            dest = os.path.join(dest, "config.yaml")
        config.to_yaml(dest)
        logger.info("Generated default %s", dest)
        print(f"Generated default {dest}")
        return

    if args.config:
        if not os.path.exists(args.config):
            logger.error("Config file not found: %s", args.config)
            print(f"Error: Config file not found: {args.config}")
            sys.exit(1)
        try:
            config = PipelineConfig.from_yaml(args.config)
        except ValueError as e:
            logger.error("Invalid config file '%s': %s", args.config, e)
            print(f"Error: Invalid config: {e}")
            sys.exit(1)
    else:
        config = PipelineConfig()

    _apply_overrides(config, args)

    if not args.inputs:
        print("Error: No input files given")
        parser.print_usage()
        sys.exit(1)

    try:
        config.validate()
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    setup_logging(config.log_level, config.log_file or None)

    from .pipeline import BatchExecutor
    executor = BatchExecutor(config)

    try:
        result = executor.run(args.inputs)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        sys.exit(130)
    except UsageError as e:
        logger.error("%s", e)
        print(f"Error: {e}")
        sys.exit(1)
    except DimensionMismatchError as e:
        logger.error("Merge aborted: %s", e)
        print(f"Error: {e}")
        sys.exit(1)
    except BatchAbortedError as e:
        logger.error("Batch aborted: %s", e)
        print(f"Error: {e}")
        sys.exit(1)

    if not result.ok:
        print(
            f"Error: {result.failed} of {len(result.files)} file(s) failed"
        )
        for file_result in result.files:
            if not file_result.ok:
                print(f"  {file_result.input_path}: {file_result.error}")
        sys.exit(1)

    if len(result.outputs) == 1:
        print("Successfully created normal map!")
    else:
        print(f"Successfully created {len(result.outputs)} normal maps!")


if __name__ == "__main__":
    main()
