"""
Reporting and Visualization Module
==================================

Plots and text summaries of batch scoring results.

Features:
- MOS-LQO and vnsim distributions
- Per-band similarity profile (mean fvnsim with spread)
- MOS-LQO vs vnsim scatter
- Text summary report with quality bands
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

logger = logging.getLogger(__name__)

plt.rcParams.update({
    'figure.figsize': (12, 8),
    'figure.dpi': 100,
    'savefig.dpi': 150,
    'font.size': 12,
    'axes.labelsize': 14,
    'axes.titlesize': 16,
    'legend.fontsize': 11,
    'axes.grid': True,
    'grid.alpha': 0.3
})

# (label, lower bound) on the MOS scale, best first
QUALITY_BANDS = [
    ("Excellent (>=4.0)", 4.0),
    ("Good (3.0-4.0)", 3.0),
    ("Fair (2.0-3.0)", 2.0),
    ("Poor (<2.0)", -np.inf),
]


class QualityReporter:
    """
    Generate plots and a text report from a results DataFrame.

    Usage:
        reporter = QualityReporter(df, "reports/")
        reporter.generate_full_report()
    """

    def __init__(self, results_df: pd.DataFrame, output_dir: str = "reports"):
        self.df = results_df
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.colors = sns.color_palette("husl", 8)
        sns.set_style("whitegrid")

    @property
    def scored(self) -> pd.DataFrame:
        """Rows with a score"""
        if "moslqo" not in self.df.columns:
            return self.df.iloc[0:0]
        return self.df[pd.to_numeric(self.df["moslqo"], errors="coerce").notna()]

    @property
    def band_columns(self) -> List[str]:
        columns = [c for c in self.df.columns if str(c).startswith("fvnsim_")]
        return sorted(columns, key=lambda c: int(str(c).split("_")[1]))

    def _save(self, fig: plt.Figure, filename: str):
        save_path = self.output_dir / filename
        fig.savefig(save_path, bbox_inches='tight')
        logger.info(f"Saved: {save_path}")

    # =========================================================================
    # PLOTS
    # =========================================================================

    def plot_score_distributions(self, save: bool = True) -> Optional[plt.Figure]:
        """Histograms of MOS-LQO and vnsim"""
        scored = self.scored
        if scored.empty:
            logger.warning("No scored rows for distribution plot")
            return None

        fig, axes = plt.subplots(1, 2, figsize=(14, 6))
        metrics = [("moslqo", "MOS-LQO"), ("vnsim", "vnsim")]

        for ax, (metric, label) in zip(axes, metrics):
            data = pd.to_numeric(scored[metric], errors="coerce").dropna()
            # KDE needs spread
            use_kde = len(data) > 1 and data.std() > 0
            sns.histplot(data, kde=use_kde, ax=ax, color=self.colors[0])

            mean_val = data.mean()
            median_val = data.median()
            ax.axvline(mean_val, color='red', linestyle='--', label=f'Mean: {mean_val:.3f}')
            ax.axvline(median_val, color='orange', linestyle='--', label=f'Median: {median_val:.3f}')

            ax.set_xlabel(label)
            ax.set_ylabel('Count')
            ax.set_title(f'Distribution of {label}')
            ax.legend()

        fig.suptitle('Quality Score Distributions', y=1.02)
        fig.tight_layout()

        if save:
            self._save(fig, "score_distributions.png")
        return fig

    def plot_band_profile(self, save: bool = True) -> Optional[plt.Figure]:
        """Mean per-band similarity across pairs, with one standard deviation"""
        scored = self.scored
        columns = self.band_columns
        if scored.empty or not columns:
            logger.warning("No per-band similarity columns for band profile")
            return None

        values = scored[columns].apply(pd.to_numeric, errors="coerce")
        mean = values.mean().to_numpy()
        std = values.std().fillna(0.0).to_numpy()
        bands = np.arange(len(columns))

        fig, ax = plt.subplots(figsize=(12, 6))
        ax.plot(bands, mean, marker='o', color=self.colors[4], label='Mean fvnsim')
        ax.fill_between(bands, np.clip(mean - std, 0, 1), np.clip(mean + std, 0, 1),
                        color=self.colors[4], alpha=0.2, label='±1 std')

        ax.set_xlabel('Band (low to high frequency)')
        ax.set_ylabel('Similarity')
        ax.set_ylim(0, 1.05)
        ax.set_title('Per-band Similarity Profile')
        ax.legend()
        fig.tight_layout()

        if save:
            self._save(fig, "band_profile.png")
        return fig

    def plot_mos_vs_similarity(self, save: bool = True) -> Optional[plt.Figure]:
        """MOS-LQO against vnsim for every scored pair"""
        scored = self.scored
        if scored.empty:
            logger.warning("No scored rows for scatter plot")
            return None

        fig, ax = plt.subplots(figsize=(10, 8))
        sns.scatterplot(
            x=pd.to_numeric(scored["vnsim"], errors="coerce"),
            y=pd.to_numeric(scored["moslqo"], errors="coerce"),
            ax=ax,
            color=self.colors[5],
            s=60,
        )
        ax.set_xlabel('vnsim')
        ax.set_ylabel('MOS-LQO')
        ax.set_ylim(0.9, 5.1)
        ax.set_title('MOS-LQO vs Similarity')
        fig.tight_layout()

        if save:
            self._save(fig, "mos_vs_similarity.png")
        return fig

    def generate_all_plots(self):
        logger.info("Generating all plots...")

        for plot in (self.plot_score_distributions, self.plot_band_profile,
                     self.plot_mos_vs_similarity):
            fig = plot()
            if fig is not None:
                plt.close(fig)

        logger.info(f"All plots saved to {self.output_dir}")

    # =========================================================================
    # TEXT REPORT
    # =========================================================================

    def generate_summary_report(self) -> str:
        """Write and return the text summary"""
        scored = self.scored
        failed = int(self.df["error"].notna().sum()) if "error" in self.df.columns else 0

        report = []
        report.append("=" * 70)
        report.append("AUDIO QUALITY ASSESSMENT REPORT")
        report.append("=" * 70)
        report.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        report.append("")

        report.append("BATCH OVERVIEW")
        report.append("-" * 40)
        report.append(f"Total pairs: {len(self.df)}")
        report.append(f"Scored: {len(scored)}")
        report.append(f"Failed: {failed}")
        if "skipped_patches" in scored.columns and not scored.empty:
            skipped = pd.to_numeric(scored["skipped_patches"], errors="coerce").fillna(0)
            report.append(f"Pairs with skipped patches: {int((skipped > 0).sum())}")
        report.append("")

        for metric, label in (("moslqo", "MOS-LQO"), ("vnsim", "VNSIM")):
            if metric not in scored.columns or scored.empty:
                continue
            data = pd.to_numeric(scored[metric], errors="coerce").dropna()
            report.append(label)
            report.append("-" * 40)
            report.append(f"Mean:   {data.mean():.3f}")
            report.append(f"Std:    {data.std():.3f}" if len(data) > 1 else "Std:    n/a")
            report.append(f"Min:    {data.min():.3f}")
            report.append(f"Max:    {data.max():.3f}")
            report.append(f"Median: {data.median():.3f}")
            report.append("")

        if not scored.empty:
            mos = pd.to_numeric(scored["moslqo"], errors="coerce").dropna()
            report.append("QUALITY ASSESSMENT")
            report.append("-" * 40)
            upper = np.inf
            for label, lower in QUALITY_BANDS:
                count = int(((mos >= lower) & (mos < upper)).sum())
                report.append(f"{label:<18} {count} ({100 * count / len(mos):.1f}%)")
                upper = lower
            report.append("")

        if failed:
            report.append("FAILURES")
            report.append("-" * 40)
            for _, row in self.df[self.df["error"].notna()].iterrows():
                report.append(f"{row['degraded']}: {row['error']}")
            report.append("")

        report.append("=" * 70)
        report_text = "\n".join(report)

        report_path = self.output_dir / "summary_report.txt"
        with open(report_path, 'w', encoding='utf-8') as f:
            f.write(report_text)
        logger.info(f"Summary report saved to {report_path}")

        return report_text

    def generate_full_report(self):
        logger.info("Generating full report package...")
        self.generate_all_plots()
        self.generate_summary_report()
        logger.info(f"Full report package saved to {self.output_dir}")


def generate_report(results_csv: str, output_dir: str = "reports"):
    """Generate plots and the text summary from a results CSV"""
    df = pd.read_csv(results_csv)
    reporter = QualityReporter(df, output_dir)
    reporter.generate_full_report()
    return reporter
