import csv
import logging
from pathlib import Path
from typing import Sequence

from .models import ActionReport, GroupStats, format_bytes


class ReportGenerator:
    ACTION_HEADERS = [
        "Reference ID",
        "Group ID",
        "Outcome",
        "Status",
        "Source Path",
        "Destination Path",
        "Error Kind",
        "Error",
        "Bytes",
    ]

    GROUP_HEADERS = [
        "Group ID",
        "Group Name",
        "Kind",
        "Files",
        "Present",
        "Missing",
        "Size (bytes)",
        "Size",
        "Latest File",
    ]

    def write_action_report(self, report: ActionReport, output_csv: Path):
        """One row per entry, in selection order."""
        logging.info(f"Writing {report.action} report -> {output_csv}")
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(self.ACTION_HEADERS)
            for r in report.results:
                writer.writerow([
                    r.reference_id,
                    r.group_id,
                    r.outcome.value,
                    r.status.value,
                    str(r.source) if r.source else "",
                    str(r.destination) if r.destination else "",
                    r.error_kind.value if r.error_kind else "",
                    r.error or "",
                    r.bytes,
                ])
        logging.info(f"Report complete. {len(report.results)} rows.")

    def write_group_summary(self, stats: Sequence[GroupStats], output_csv: Path):
        logging.info(f"Writing group summary -> {output_csv}")
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(self.GROUP_HEADERS)
            for st in stats:
                writer.writerow([
                    st.group_id,
                    st.display_name,
                    st.kind.value,
                    st.file_count,
                    st.present_count,
                    st.missing_count,
                    st.total_size,
                    st.format_size(),
                    st.latest_sent_at.isoformat() if st.latest_sent_at else "",
                ])

    def summarize(self, report: ActionReport) -> str:
        prefix = "[DRY RUN] " if report.dry_run else ""
        if report.dry_run:
            counts = f"would succeed: {report.would_succeed}, would fail: {report.would_fail}"
        else:
            counts = f"done: {report.done}, failed: {report.failed}"
        line = (
            f"{prefix}{report.action}: {counts}, skipped (missing): {report.skipped}, "
            f"already done: {report.already_done}, {format_bytes(report.bytes_processed)}"
        )
        if report.interrupted:
            line += " (interrupted)"
        return line
