'''
Visualize the porosity profile and a snapshot of the packing
'''
import os

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

background_color = "#F8FAFC"
line_color = '#181C14'
cmap_name = "plasma"


def plot_porosity_profile(porosity_evaluator, file_name: str, dpi: int = 150):
    """Porosity over height, one point per layer."""
    fig, ax = plt.subplots(figsize=(4, 6), dpi=dpi)
    fig.patch.set_facecolor(background_color)
    ax.set_facecolor(background_color)
    ax.plot(porosity_evaluator.porosity, porosity_evaluator.layer_centers, color=line_color, linewidth=1.5,
            marker='o', markersize=3)
    ax.axhline(0.9 * porosity_evaluator.maximum_height, color='#888888', linestyle='--', linewidth=1.0)
    ax.set_xlim(0.0, 1.0)
    ax.set_ylim(0.0, porosity_evaluator.domain_height)
    ax.set_xlabel("porosity")
    ax.set_ylabel("z")
    fig.tight_layout()
    os.makedirs(os.path.dirname(os.path.abspath(file_name)), exist_ok=True)
    fig.savefig(file_name, facecolor=fig.get_facecolor())
    plt.close(fig)
    return file_name


def plot_packing(ranks, aabb_min, aabb_max, file_name: str, dpi: int = 150):
    """3D scatter of the owned particles, coloured by height."""
    px, py, pz, rad = [], [], [], []
    for r in ranks:
        s = r.storage
        owned = s.owned_indices()
        px.append(s.position[owned, 0])
        py.append(s.position[owned, 1])
        pz.append(s.position[owned, 2])
        rad.append(s.interaction_radius[owned])
    px, py, pz, rad = (np.concatenate(a) if a else np.zeros(0) for a in (px, py, pz, rad))
    xmin, ymin, zmin = aabb_min
    xmax, ymax, zmax = aabb_max

    fig = plt.figure(figsize=(8, 8), dpi=dpi)
    fig.patch.set_facecolor(background_color)
    ax = fig.add_subplot(111, projection='3d')
    ax.set_facecolor(background_color)

    # marker area in points^2 from the radius relative to the domain width
    scale = 0.5 * fig.get_figwidth() * 72.0 / max(xmax - xmin, ymax - ymin)
    ax.scatter(px, py, pz, s=(rad * scale) ** 2, c=pz, cmap=cmap_name, alpha=0.75,
               edgecolors='white', linewidths=0.3, depthshade=True)

    ax.set_xlim(xmin, xmax)
    ax.set_ylim(ymin, ymax)
    ax.set_zlim(zmin, zmax)
    ax.set_box_aspect([xmax - xmin, ymax - ymin, zmax - zmin])
    fig.tight_layout()
    os.makedirs(os.path.dirname(os.path.abspath(file_name)), exist_ok=True)
    fig.savefig(file_name, facecolor=fig.get_facecolor())
    plt.close(fig)
    return file_name
