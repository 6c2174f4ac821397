import logging
import os
import sys
import time

# Taichi packages (set backend, default precision and device memory)
import taichi as ti
ti.init(arch=ti.cpu, default_fp=ti.f64)

from packing3d.config import PackingConfig
from packing3d.simulation import ParticlePacking

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

# =====================================
# Simulation Settings
# =====================================
here = os.path.dirname(os.path.abspath(__file__))
config_file = sys.argv[1] if len(sys.argv) > 1 else os.path.join(here, "periodic_spheres.json")
max_steps = 200000      # safety limit, the run normally terminates on convergence


def main():
    """Main function to run the packing simulation."""
    config = PackingConfig.from_json(config_file)
    print(config.summary())

    start_time = time.time()
    packing = ParticlePacking(config, config_file=config_file)
    result = packing.run(max_steps=max_steps)
    end_time = time.time()

    print(f"Run {result.identifier}: {result.num_particles} particles, {result.num_contacts} contacts")
    print(f"Packing height {result.maximum_height:.4f}, estimated porosity {result.estimated_porosity:.4f}")
    print(f"Simulated {result.simulation_time:.3f} s in {result.timesteps} steps, "
          f"wall time {end_time - start_time:.1f} s")


if __name__ == "__main__":
    main()
