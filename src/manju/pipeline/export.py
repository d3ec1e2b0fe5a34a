"""Persist an adaptation session as a directory of Markdown and JSON files."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from ..llm.cost import CostTracker
from .controller import StageController
from .schema import plan_to_markdown

logger = logging.getLogger(__name__)

__all__ = ["PackageExporter", "ExportedPackage", "script_filename"]


def script_filename(episode_number: int) -> str:
    return f"episode-{episode_number:02d}.md"


@dataclass(slots=True)
class ExportedPackage:
    """Paths written by :meth:`PackageExporter.export`; ``None`` when skipped."""

    output_dir: Path
    analysis: Optional[Path]
    plan: Optional[Path]
    scripts: list[Path]
    run: Path


class PackageExporter:
    """Filesystem-backed writer for analysis, plan, scripts and run metadata.

    Layout::

        analysis.md / analysis.json
        plan.md / plan.json
        scripts/episode-01.md ...
        run.json
    """

    def __init__(self, output_dir: Path | str, *, encoding: str = "utf-8") -> None:
        self.output_dir = Path(output_dir).expanduser()
        self.encoding = encoding

    def export(
        self,
        controller: StageController,
        *,
        cost_tracker: Optional[CostTracker] = None,
        source: Optional[Path | str] = None,
    ) -> ExportedPackage:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        analysis_path: Optional[Path] = None
        plan_path: Optional[Path] = None

        analysis = controller.analysis
        if analysis is not None:
            analysis_path = self.output_dir / "analysis.md"
            self.write_markdown(analysis_path, analysis.to_markdown())
            self.write_json(self.output_dir / "analysis.json", analysis.model_dump(mode="json", by_alias=True))

        if controller.plan:
            plan_path = self.output_dir / "plan.md"
            self.write_markdown(plan_path, plan_to_markdown(controller.plan))
            self.write_json(
                self.output_dir / "plan.json",
                [entry.model_dump(mode="json", by_alias=True) for entry in controller.plan],
            )

        script_paths: list[Path] = []
        titles = {entry.episode_number: entry.title for entry in controller.plan}
        for artifact in controller.artifacts:
            path = self.output_dir / "scripts" / script_filename(artifact.episode_number)
            heading = f"# 第 {artifact.episode_number} 集"
            if artifact.episode_number in titles:
                heading += f" · {titles[artifact.episode_number]}"
            self.write_markdown(path, f"{heading}\n\n{artifact.content.strip()}\n")
            script_paths.append(path)

        run_path = self.output_dir / "run.json"
        self.write_json(run_path, self._run_metadata(controller, cost_tracker, source, script_paths))
        logger.info("Exported adaptation package to %s (%d scripts)", self.output_dir, len(script_paths))
        return ExportedPackage(
            output_dir=self.output_dir,
            analysis=analysis_path,
            plan=plan_path,
            scripts=script_paths,
            run=run_path,
        )

    def _run_metadata(
        self,
        controller: StageController,
        cost_tracker: Optional[CostTracker],
        source: Optional[Path | str],
        script_paths: list[Path],
    ) -> dict[str, Any]:
        snapshot = controller.snapshot()
        return {
            "input": str(source) if source is not None else None,
            "output_dir": str(self.output_dir),
            "stage": snapshot["stage"],
            "history": snapshot["history"],
            "last_error": snapshot["last_error"],
            "episodes_planned": len(controller.plan),
            "episodes_scripted": controller.artifacts.episode_numbers,
            "episodes_pending": controller.pending_episodes(),
            "scripts": [str(path) for path in script_paths],
            "log": snapshot["log"],
            "cost": cost_tracker.to_dict() if cost_tracker is not None else None,
        }

    def write_markdown(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding=self.encoding)

    def write_json(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding=self.encoding)
