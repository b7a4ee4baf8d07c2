"""Utilities for saving answer reports."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path

from .config import settings
from .models import CachedResult

logger = logging.getLogger(__name__)


def render_report(query: str, result: CachedResult) -> str:
    """Render a result bundle as markdown with numbered sources."""
    lines = [f"# {query}", "", result.answer.strip() or "_No answer was generated._", ""]

    if result.webs:
        lines += ["## Sources", ""]
        for index, source in enumerate(result.webs, start=1):
            title = source.title or source.url or f"Source {index}"
            lines.append(f"{index}. [{title}]({source.url})" if source.url else f"{index}. {title}")
        lines.append("")

    if result.images:
        lines += ["## Images", ""]
        lines += [f"- ![{image.title}]({image.image})" for image in result.images]
        lines.append("")

    related = [line.strip() for line in result.related.splitlines() if line.strip()]
    if related:
        lines += ["## Related", ""]
        lines += [f"- {question}" for question in related]
        lines.append("")

    return "\n".join(lines)


def save_answer_report(query: str, result: CachedResult, path: str | Path | None = None) -> Path:
    """Save an answer report, plus a JSON sidecar with the raw bundle.

    Args:
        query: The question that was answered.
        result: The complete result bundle.
        path: Target markdown file. Defaults to a timestamped file in the results directory.

    Returns:
        Path to the saved markdown file.
    """
    if path is None:
        # Include microseconds to avoid collisions when called multiple times per second.
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        safe_query = re.sub(r"[^\w\-]", "_", query)[:30]
        file_path = settings.get_results_dir() / f"{timestamp}_{safe_query}.md"
    else:
        file_path = Path(path).expanduser()
        file_path.parent.mkdir(parents=True, exist_ok=True)

    file_path.write_text(render_report(query, result), encoding="utf-8")

    meta = {
        "timestamp": datetime.now().isoformat(),
        "file": file_path.name,
        "query": query,
        **result.model_dump(mode="json"),
    }
    file_path.with_suffix(".json").write_text(json.dumps(meta, indent=2, ensure_ascii=False), encoding="utf-8")

    logger.info(f"Saved report to {file_path}")
    return file_path
