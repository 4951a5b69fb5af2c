from __future__ import annotations

import re
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from replayer.dom.accessor import DomAccessor

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class ArtifactManager:
    """Keeps the files written for failed steps: page source, screenshots, recorded snapshots."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.dom_root = self.root / "dom_snapshots"
        self.screenshot_root = self.root / "screenshots"
        self.visual_root = self.root / "visual_snapshots"
        self._ensure_structure()

    @property
    def directories(self) -> tuple[Path, ...]:
        return (self.dom_root, self.screenshot_root, self.visual_root)

    def _ensure_structure(self) -> None:
        for directory in (self.root, *self.directories):
            directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def timestamp() -> str:
        return datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")

    @staticmethod
    def _name(stamp: str, step_key: str, suffix: str) -> str:
        return f"{stamp}_{_UNSAFE.sub('_', step_key)}{suffix}"

    def write_dom_snapshot(self, step_key: str, page_source: str, timestamp: str | None = None) -> Path:
        path = self.dom_root / self._name(timestamp or self.timestamp(), step_key, ".html")
        path.write_text(page_source, encoding="utf-8")
        return path

    def write_screenshot(self, step_key: str, png: bytes, timestamp: str | None = None) -> Path:
        path = self.screenshot_root / self._name(timestamp or self.timestamp(), step_key, ".png")
        path.write_bytes(png)
        return path

    def write_visual_snapshot(self, step_key: str, blob: bytes, timestamp: str | None = None) -> Path:
        path = self.visual_root / self._name(timestamp or self.timestamp(), step_key, ".bin")
        path.write_bytes(blob)
        return path

    def capture_failure(
        self,
        step_key: str,
        dom: DomAccessor,
        visual_snapshot: bytes | None = None,
    ) -> dict[str, str]:
        stamp = self.timestamp()
        paths = {"dom_snapshot": str(self.write_dom_snapshot(step_key, dom.page_source(), stamp))}
        screenshot = getattr(dom, "screenshot", None)
        if callable(screenshot):
            paths["screenshot"] = str(self.write_screenshot(step_key, screenshot(), stamp))
        if visual_snapshot:
            paths["visual_snapshot"] = str(self.write_visual_snapshot(step_key, visual_snapshot, stamp))
        return paths

    def reset(self) -> Path:
        self._ensure_structure()
        for child in self.root.iterdir():
            if child.is_file() and child.name != ".gitkeep":
                child.unlink()
        for directory in self.directories:
            for child in directory.iterdir():
                if child.is_dir():
                    shutil.rmtree(child)
                elif child.name != ".gitkeep":
                    child.unlink()
        return self.root
