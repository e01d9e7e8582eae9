from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Sequence

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from .runner import BenchRunResult

LOGGER = logging.getLogger("querybench.bench.export")

MANIFEST_FILENAME = "bench_manifest.json"

COLUMNS = [
    "BenchRunId",
    "CasesHash",
    "CaseId",
    "Server",
    "Query",
    "SignalExpression",
    "Description",
    "Start",
    "End",
    "Runs",
    "LastResult",
    "MinElapsed",
    "MaxElapsed",
    "MeanElapsed",
    "StandardDeviationElapsed",
    "RelativeStandardDeviationElapsed",
]

sns.set_style("whitegrid")
plt.rcParams["savefig.dpi"] = 200
plt.rcParams["font.size"] = 10
plt.rcParams["axes.titlesize"] = 13


def results_dataframe(results: Sequence[BenchRunResult]) -> pd.DataFrame:
    """One row per case; optional properties absent from a result are left empty."""
    return pd.DataFrame([result.to_properties() for result in results], columns=COLUMNS)


def export_results(results: Sequence[BenchRunResult], output_dir: Path) -> Path | None:
    """Write the CSV table, chart and manifest for a run. Returns the manifest path."""
    if not results:
        LOGGER.warning("No bench results to export")
        return None

    output_dir.mkdir(parents=True, exist_ok=True)
    first = results[0]
    stem = f"bench-{first.cases_hash}-{first.bench_run_id}"

    df = results_dataframe(results)
    csv_path = output_dir / f"{stem}.csv"
    df.to_csv(csv_path, index=False)
    LOGGER.info("Saved %d result(s) to %s", len(df), csv_path)

    chart_path = render_elapsed_chart(df, output_dir / f"{stem}.png")

    manifest = {
        "benchRunId": first.bench_run_id,
        "casesHash": first.cases_hash,
        "server": first.server,
        "runs": first.runs,
        "cases": [result.case_id for result in results],
        "csv": csv_path.name,
        "chart": chart_path.name,
    }
    manifest_path = output_dir / MANIFEST_FILENAME
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)
    LOGGER.info("Bench manifest written to %s", manifest_path)
    return manifest_path


def render_elapsed_chart(df: pd.DataFrame, chart_path: Path) -> Path:
    """Bar chart of mean elapsed time per case with standard deviation error bars."""
    fig, ax = plt.subplots(figsize=(max(6, len(df) * 0.9), 6))

    ax.bar(
        df["CaseId"],
        df["MeanElapsed"],
        yerr=df["StandardDeviationElapsed"],
        capsize=4,
        color="#2E86AB",
        alpha=0.8,
        edgecolor="white",
        linewidth=1.5,
    )
    for index, (mean, rsd) in enumerate(zip(df["MeanElapsed"], df["RelativeStandardDeviationElapsed"])):
        ax.text(
            index,
            mean,
            f"{mean:,.0f} ms\n±{rsd:.2f}",
            ha="center",
            va="bottom",
            fontsize=8,
        )

    first = df.iloc[0]
    ax.set_ylabel("Mean elapsed (ms)", fontweight="semibold")
    ax.set_xlabel("Case", fontweight="semibold")
    ax.set_title(
        f"Bench run {first['CasesHash']}/{first['BenchRunId']} ({first['Runs']} runs per case)",
        fontweight="bold",
        pad=15,
    )
    ax.set_ylim(bottom=0)
    ax.tick_params(axis="x", labelrotation=30)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


__all__ = ["export_results", "render_elapsed_chart", "results_dataframe"]
