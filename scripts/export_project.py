#!/usr/bin/env python3
"""
Textured Model Export

This script loads a project file (model + calibrated photographs) and
exports the model as a textured OBJ bundle, optionally writing calibration
overlays for every photograph and opening an interactive 3D preview.
"""

from __future__ import annotations

import argparse
import datetime
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Optional

import yaml

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photomatch import evaluate, exporter, project, visualise


# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    handlers=[
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("export")


def load_config(config_path: Optional[str] = None) -> Dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    return config


def save_report(output_dir: str, metrics: Dict) -> None:
    """Save export metrics as report.json.

    Args:
        output_dir: Path to output directory
        metrics: Export metrics
    """
    report_file = os.path.join(output_dir, "report.json")
    with open(report_file, "w") as f:
        json.dump(metrics, f, indent=2)

    logger.info(f"Report saved to {report_file}")


def run_export(
    project_path: str,
    output_path: str,
    visualise_results: bool = False,
    show_model: bool = False,
    config_path: Optional[str] = None,
) -> Dict:
    """Load a project and export its model.

    Args:
        project_path: Path to the project file
        output_path: Target .obj path
        visualise_results: Whether to save calibration overlays
        show_model: Whether to open the interactive 3D preview
        config_path: Path to configuration file

    Returns:
        Dictionary of export metrics
    """
    output_dir = str(Path(output_path).resolve().parent / Path(output_path).stem)
    os.makedirs(output_dir, exist_ok=True)

    # Set up file logging
    file_handler = logging.FileHandler(os.path.join(output_dir, "log.txt"))
    file_handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"))
    logging.getLogger().addHandler(file_handler)

    config = load_config(config_path)
    level = config.get("logging", {}).get("level")
    if level:
        logging.getLogger().setLevel(level)

    metrics = evaluate.ExportMetrics()
    timer = evaluate.Timer("Run", metrics)
    timer.start()

    # === Stage 1: Load Project ===
    model_config = config.get("model", {})
    loaded = project.load_project(
        project_path,
        collinear_tolerance=model_config.get("collinear_tolerance", 1e-6),
    )
    timer.stage("load_project")

    invalid = [p.image_path for p in loaded.perspectives if not p.valid]
    if invalid:
        logger.warning(f"Perspectives with invalid calibration will not be used: {invalid}")

    # === Stage 2: Export ===
    success = exporter.export_model(
        loaded.model,
        output_path,
        loaded.perspectives,
        config=config.get("export", {}),
        metrics=metrics,
    )
    if not success:
        raise RuntimeError(f"Export to {output_path} failed")
    timer.stage("export")

    # === Stage 3: Overlays (optional) ===
    if visualise_results:
        for i, perspective in enumerate(loaded.perspectives):
            overlay_path = os.path.join(output_dir, f"perspective{i}.png")
            visualise.save_overlay(perspective, overlay_path, loaded.model)

        texture_paths = sorted(str(p) for p in Path(output_dir).glob("face*.png"))
        visualise.save_textures_summary(texture_paths, os.path.join(output_dir, "textures.png"))
        timer.stage("visualization")

    timer.stop()
    metrics_dict = metrics.to_dict()
    metrics_dict["datetime"] = datetime.datetime.now().isoformat()
    metrics_dict["project"] = str(project_path)
    save_report(output_dir, metrics_dict)

    logger.info("\n" + metrics.summary())

    # === Stage 4: Interactive Preview (optional) ===
    if show_model:
        # Open3D is an optional dependency
        from photomatch import viewer

        viewer.show(loaded.model, save_path=os.path.join(output_dir, "model.png"))

    return metrics_dict


def main():
    """Main function to parse arguments and run the export."""
    parser = argparse.ArgumentParser(description="Textured Model Export")
    parser.add_argument(
        "--project", "-p", dest="project_path", required=True,
        help="Path to project file"
    )
    parser.add_argument(
        "--output", "-o", dest="output_path", default="results/model.obj",
        help="Path to output .obj file"
    )
    parser.add_argument(
        "--visualise", "-v", dest="visualise", action="store_true",
        help="Save calibration overlays and a texture summary"
    )
    parser.add_argument(
        "--show", "-s", dest="show", action="store_true",
        help="Open an interactive 3D preview"
    )
    parser.add_argument(
        "--config", "-c", dest="config_path", default=None,
        help="Path to configuration file"
    )

    args = parser.parse_args()

    try:
        run_export(
            args.project_path,
            args.output_path,
            args.visualise,
            args.show,
            args.config_path
        )
    except Exception as e:
        logger.exception(f"Error exporting project: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
