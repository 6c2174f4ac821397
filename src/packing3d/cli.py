"""
Command line entry point:

    packing3d CONFIG.json [--arch cpu|gpu] [--log-level INFO] [--max-steps N]

Exit status: 0 terminated, 1 configuration error, 2 stopped by --max-steps
before convergence.
"""

import argparse
import logging
import sys

import taichi as ti

from .config import ConfigurationError, PackingConfig
from .simulation import ParticlePacking

logger = logging.getLogger("packing3d")

ARCHS = {"cpu": ti.cpu, "gpu": ti.gpu}


def build_parser():
    parser = argparse.ArgumentParser(prog="packing3d",
                                     description="Generate, shake and settle a granular packing.")
    parser.add_argument("config", help="JSON configuration file")
    parser.add_argument("--arch", choices=sorted(ARCHS), default="cpu", help="taichi backend")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--max-steps", type=int, default=None,
                        help="stop after this many time steps even if the packing has not converged")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    try:
        config = PackingConfig.from_json(args.config)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    except OSError as e:
        logger.error(f"Could not read configuration file: {e}")
        return 1

    # Taichi packages (set backend and default precision)
    ti.init(arch=ARCHS[args.arch], default_fp=ti.f64)
    logger.info(config.summary())

    try:
        packing = ParticlePacking(config, config_file=args.config)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    result = packing.run(max_steps=args.max_steps)
    logger.info(f"Run {result.identifier}: {result.num_particles} particles after {result.timesteps} steps, "
                f"porosity {result.estimated_porosity:.4f}")
    if not result.terminated:
        logger.warning(f"Packing did not converge within {args.max_steps} time steps")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
