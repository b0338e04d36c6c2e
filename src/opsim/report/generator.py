"""Report generator - JSON and Markdown output for block replays."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from ..replay.block import ReplayResult, ReplayStatus

__all__ = ["ReportGenerator"]


class ReportGenerator:
    def __init__(self, title: str = "replay") -> None:
        self.title = title

    @staticmethod
    def _summary(results: list[ReplayResult]) -> dict[str, int]:
        return {
            "blocks": len(results),
            "completed": sum(1 for r in results if r.status is ReplayStatus.COMPLETED),
            "failed": sum(1 for r in results if r.status is ReplayStatus.FAILED),
            "executed": sum(len(r.executed) for r in results),
            "skipped": sum(len(r.skipped) for r in results),
            "tolerated_reverts": sum(len(r.tolerated) for r in results),
            "gas_used": sum(r.gas_used for r in results),
        }

    def to_dict(self, results: list[ReplayResult]) -> dict[str, Any]:
        """Serialize replay results into a structured report dictionary."""
        ordered = sorted(results, key=lambda r: r.height)
        return {
            "title": self.title,
            "timestamp": datetime.now(UTC).isoformat(),
            "passed": all(r.ok for r in ordered),
            "summary": self._summary(ordered),
            "blocks": [r.to_dict() for r in ordered],
        }

    def to_json(self, results: list[ReplayResult]) -> str:
        """Return the report as a pretty-printed JSON string."""
        return json.dumps(self.to_dict(results), indent=2)

    @staticmethod
    def _markdown_table(headers: list[str], rows: list[list[str]]) -> list[str]:
        sep = "|".join("-" * max(len(h), 3) for h in headers)
        lines = [
            "| " + " | ".join(headers) + " |",
            "|" + sep + "|",
        ]
        for row in rows:
            lines.append("| " + " | ".join(row) + " |")
        return lines

    def to_markdown(self, results: list[ReplayResult]) -> str:
        """Render the report as a Markdown document."""
        d = self.to_dict(results)
        summary = d["summary"]
        lines = [
            f"# Block Replay Report: {self.title}",
            f"\nGenerated: {d['timestamp']}\n",
            "## Summary\n",
        ]
        lines.extend(self._markdown_table(
            ["Metric", "Value"],
            [[key.replace("_", " ").capitalize(), str(value)] for key, value in summary.items()],
        ))
        lines.append(f"\n**Result: {'passed' if d['passed'] else 'FAILED'}**\n")

        lines.append("## Blocks\n")
        if d["blocks"]:
            lines.extend(self._markdown_table(
                ["Block", "Status", "Executed", "Skipped", "Gas"],
                [
                    [str(b["height"]), b["status"], str(len(b["executed"])), str(len(b["skipped"])), str(b["gas_used"])]
                    for b in d["blocks"]
                ],
            ))
        else:
            lines.append("No blocks replayed.")
        lines.append("")

        failures = [b for b in d["blocks"] if b["failure"] or b["tolerated"]]
        if failures:
            lines.append("## Failures\n")
        for b in failures:
            items = ([b["failure"]] if b["failure"] else []) + b["tolerated"]
            for item in items:
                where = f"transaction #{item['index']}" if item["index"] >= 0 else "setup"
                tolerated = item is not b["failure"]
                lines.append(f"### Block {b['height']}, {where}{' (tolerated)' if tolerated else ''}")
                if item["tx_id"]:
                    lines.append(f"\n- **Transaction:** `{item['tx_id']}`")
                else:
                    lines.append("")
                lines.append(f"- **Error:** {item['message']}")
                if item["original_revert"]:
                    lines.append(f"- **Recorded revert:** {item['original_revert']}")
                lines.append("")
        return "\n".join(lines)
