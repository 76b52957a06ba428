"""
Result management for saving run outputs.
Writes the evaluation report as JSON, CSV tables and a plain-text summary
into a timestamped run directory.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from phow_bench.evaluation.confusion_matrix import EvaluationReport

logger = logging.getLogger(__name__)


def format_report(report: EvaluationReport, title: Optional[str] = None) -> str:
    """Human-readable report: headline numbers, per-class table, confusion table."""
    lines = []
    if title:
        lines.append(title)
        lines.append("=" * len(title))
    lines.append(f"Accuracy:         {report.accuracy:.4f}")
    lines.append(f"Correct:          {report.n_correct}")
    lines.append(f"Incorrect:        {report.n_incorrect}")
    lines.append(f"Abstained:        {report.n_abstained} / {report.n_samples} "
                 f"({report.abstention_rate:.2%})")
    lines.append(f"Macro precision:  {report.macro_precision:.4f}")
    lines.append(f"Macro recall:     {report.macro_recall:.4f}")
    lines.append(f"Macro F1:         {report.macro_f1:.4f}")
    lines.append("")
    lines.append("Per-class:")
    lines.append(report.per_class_dataframe().to_string(index=False, float_format=lambda v: f"{v:.4f}"))
    lines.append("")
    lines.append("Confusion matrix (rows: true, columns: predicted):")
    lines.append(report.to_dataframe().to_string())
    return "\n".join(lines)


class ResultManager:
    """Manages run output saving and organization."""

    def __init__(self, run_config: Dict[str, Any], run_directory: Optional[Path] = None):
        """
        Args:
            run_config: Run configuration dictionary ('output_dir', optional 'run_name')
            run_directory: Use this directory instead of creating a timestamped one
        """
        self.run_config = run_config
        self.run_directory = Path(run_directory) if run_directory else self._create_run_directory()
        self.run_directory.mkdir(parents=True, exist_ok=True)

    def _create_run_directory(self) -> Path:
        output_root = Path(self.run_config.get('output_dir', 'outputs'))
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        run_name = self.run_config.get('run_name')
        return output_root / (f"{run_name}_{timestamp}" if run_name else timestamp)

    def save_config(self) -> Path:
        config_file = self.run_directory / "run_config.yaml"
        with open(config_file, 'w') as f:
            yaml.safe_dump(self.run_config, f, sort_keys=False)
        return config_file

    def save_report(
        self,
        report: EvaluationReport,
        extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Path]:
        """
        Write report.json, confusion_matrix.csv, per_class.csv and report.txt.

        Args:
            report: Evaluation report
            extra: Additional fields merged into report.json (timings, cache stats)

        Returns:
            Mapping of artifact name to written path
        """
        paths = {
            'json': self.run_directory / "report.json",
            'confusion_matrix': self.run_directory / "confusion_matrix.csv",
            'per_class': self.run_directory / "per_class.csv",
            'text': self.run_directory / "report.txt",
        }

        payload = report.to_dict()
        payload['created_at'] = datetime.now().isoformat()
        if extra:
            payload.update(extra)
        with open(paths['json'], 'w') as f:
            json.dump(payload, f, indent=2, default=str)

        report.to_dataframe().to_csv(paths['confusion_matrix'])
        report.per_class_dataframe().to_csv(paths['per_class'], index=False, float_format='%.6f')
        paths['text'].write_text(format_report(report, title=self.run_config.get('run_name')) + "\n",
                                 encoding='utf-8')

        logger.info(f"Results written to: {self.run_directory}")
        print(f"Results written to: {self.run_directory}")
        return paths
