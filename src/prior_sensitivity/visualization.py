"""
Plotting for the prior-sensitivity comparison.

- One figure per sample size, one slope density per prior, true slope marked
- Trace / posterior panels for a single cell
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns

from .analysis import SlopeDensityReport
from .config import PRIOR_COLORS, TRUE_VALUE_COLOR


class PriorSensitivityVisualizer:
    """Create plots from a SlopeDensityReport or a single cell."""

    @staticmethod
    def plot_slope_densities(
        report: SlopeDensityReport,
        save_dir: str,
        *,
        xlim: Tuple[float, float] = (0.0, 4.0),
    ) -> List[str]:
        """Overlay the slope densities of every prior, one figure per sample size.

        Cells without a curve (failed or degenerate) are listed in the legend as "(no curve)".

        Returns:
            Paths of the saved figures
        """
        save_dir = Path(save_dir)
        save_dir.mkdir(parents=True, exist_ok=True)
        paths = []

        for n, by_prior in report.curves.items():
            fig, ax = plt.subplots(figsize=(7, 5))
            colors = list(PRIOR_COLORS)
            if len(by_prior) > len(colors):
                colors = sns.color_palette("husl", len(by_prior))

            y_max = 0.0
            for i, (name, est) in enumerate(by_prior.items()):
                if est is None:
                    ax.plot([], [], color=colors[i], linewidth=2, linestyle=':', label=f"{name} (no curve)")
                    continue
                ax.plot(est.grid, est.density, color=colors[i], linewidth=2, label=name)
                y_max = max(y_max, float(np.max(est.density)))

            if report.true_slope is not None:
                ax.plot([report.true_slope], [0.0], marker='^', markersize=12, color='black',
                        markerfacecolor=TRUE_VALUE_COLOR, linestyle='none', clip_on=False, zorder=10)

            ax.set_xlim(*xlim)
            if y_max > 0:
                ax.set_ylim(0.0, 1.05 * y_max)
            ax.set_xlabel('slope')
            ax.set_ylabel('Density')
            ax.set_title(f'slope for n_obs={n}')
            ax.legend(loc='upper right', frameon=False)
            ax.grid(True, alpha=0.3)

            path = save_dir / f"slope_density_n{n}.png"
            plt.tight_layout()
            plt.savefig(path, dpi=300, bbox_inches='tight')
            print(f"Density plot saved to {path}")
            plt.close(fig)
            paths.append(str(path))

        return paths

    @staticmethod
    def plot_traces(cell, save_path: str, true_values: Optional[Dict[str, float]] = None):
        """Trace and posterior histogram for intercept, slope and sigma of one cell."""
        if cell.failed or not cell.chains:
            return

        names = ["intercept", "slope", "sigma"]
        fig, axes = plt.subplots(2, 3, figsize=(15, 7))
        colors = sns.color_palette("husl", len(cell.chains))

        for j, name in enumerate(names):
            ax_trace = axes[0, j]
            for k, chain in enumerate(cell.chains):
                values = chain.draws[:, j]
                if name == "sigma":
                    values = np.exp(values)
                ax_trace.plot(values, linewidth=0.6, alpha=0.7, color=colors[k], label=f'Chain {chain.chain_id + 1}')
            ax_trace.set_title(f'Trace: {name}')
            ax_trace.set_xlabel('Iteration (post warmup)')
            ax_trace.grid(True, alpha=0.3)

            samples = cell.draws(constrained=True)[:, j]
            ax_post = axes[1, j]
            ax_post.hist(samples, bins=40, density=True, alpha=0.7, color='slategray',
                         edgecolor='black', linewidth=0.5)
            ax_post.axvline(float(np.mean(samples)), color='navy', linewidth=1.3, label='Mean')
            if true_values and name in true_values:
                ax_trace.axhline(true_values[name], color='red', linestyle='--', linewidth=1.3)
                ax_post.axvline(true_values[name], color='red', linestyle='--', linewidth=1.3, label='True')
            ax_post.set_title(f'Posterior: {name}')
            ax_post.grid(True, alpha=0.3, axis='y')
            ax_post.legend(frameon=True, framealpha=0.9)

        axes[0, 0].legend(loc='upper right', frameon=True, framealpha=0.9)
        fig.suptitle(f'{cell.prior.name}, n={cell.sample_size}', fontweight='bold')
        plt.tight_layout()
        plt.savefig(save_path, dpi=300, bbox_inches='tight')
        print(f"Diagnostics saved to {save_path}")
        plt.close(fig)
