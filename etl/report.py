"""Report module: writes a Markdown review sheet for a matcher run."""

from typing import Dict, List, Optional, Union
from pathlib import Path


def write_markdown_report(warnings: Dict, output_path: Union[str, Path] = "report.md",
                          runners: Optional[Dict[str, Dict]] = None) -> None:
    """Write a Markdown report of everything a matcher run left for review.

    Parameters
    ----------
    warnings : Dict
        Warnings document as produced by ``MatchReport.to_warnings``.
    output_path : Union[str, Path], optional
        Destination file path, by default "report.md".
    runners : Optional[Dict[str, Dict]], optional
        Runner database records, used to show who a suggested id belongs to.
    """
    runners = runners or {}
    year = warnings.get("target_year")
    summary = warnings.get("summary", {})
    lines: List[str] = [f"# Runner ID review — {year}", ""]

    lines.append(
        f"> Already assigned: {summary.get('already_assigned', 0)}, "
        f"auto-assigned: {summary.get('auto_assigned', 0)}, "
        f"new runners: {summary.get('new_runners_created', 0)}, "
        f"needing review: {summary.get('needs_review', 0)}."
    )
    lines.append("")

    uncertain = warnings.get("uncertain_matches", [])
    lines.append(f"## Uncertain matches ({len(uncertain)})")
    for item in uncertain:
        result = item["result"]
        suggested = item["suggested_id"]
        known = runners.get(suggested)
        line = f"- #{result['position']} {result['name']} → `{suggested}` ({item['confidence'] * 100:.1f}%)"
        if known:
            years = ", ".join(str(y) for y in known.get("years", []))
            line += f"\n  > {known.get('canonical_name')} · {known.get('most_common_club') or 'no club'} · {years}"
        lines.append(line)

    duplicates = warnings.get("duplicates_in_new_year", [])
    lines.append("")
    lines.append(f"## Similar names within {year} ({len(duplicates)})")
    for pair in duplicates:
        (pos_a, pos_b), (name_a, name_b) = pair["positions"], pair["names"]
        lines.append(f"- #{pos_a} {name_a} / #{pos_b} {name_b} ({pair['similarity'] * 100:.1f}% similar)")

    Path(output_path).write_text("\n".join(lines) + "\n", encoding="utf-8")

__all__ = ["write_markdown_report"]
