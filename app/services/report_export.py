"""
CSV rendering of an aggregated video analytics report
"""

import logging
from io import StringIO
from typing import List, Tuple

import pandas as pd

from app.schemas.analytics import AggregatedReport, DateRange

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
PEAK_HOURS_LIMIT = 20


def _fixed(value: float, digits: int = 2) -> str:
    return f"{value:.{digits}f}"


def _frame(columns: List[str], rows: List[list]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=columns)


def build_report_sections(report: AggregatedReport) -> List[Tuple[str, pd.DataFrame]]:
    """Titled tables in export order; column order is fixed per section"""
    metrics = report.metrics
    engagement = report.student_engagement

    peak_hours = sorted(
        engagement.peak_hours,
        key=lambda item: item.activity_count,
        reverse=True
    )[:PEAK_HOURS_LIMIT]

    return [
        ("SUMMARY METRICS", _frame(["Metric", "Value"], [
            ["Total Views", metrics.total_views],
            ["Total Watch Time (hours)", _fixed(metrics.total_watch_time_seconds / 3600)],
            ["Average Completion Rate (%)", _fixed(metrics.avg_completion_rate)],
            ["Total Videos", metrics.total_videos],
        ])),
        ("TRENDS (vs Previous Period)", _frame(["Metric", "Change (%)"], [
            ["Views", metrics.trends.views],
            ["Watch Time", metrics.trends.watch_time],
            ["Completion Rate", metrics.trends.completion],
            ["Videos", metrics.trends.videos],
        ])),
        ("VIEWS OVER TIME", _frame(["Date", "Views"], [
            [row.date, row.views] for row in report.views_over_time
        ])),
        ("COMPLETION RATES BY VIDEO", _frame(["Video Title", "Views", "Completion Rate (%)"], [
            [row.title, row.views, _fixed(row.completion_rate)] for row in report.completion_rates
        ])),
        ("COST BREAKDOWN", _frame(["Method", "Total Cost ($)", "Video Count"], [
            [row.method, _fixed(row.total_cost), row.video_count] for row in report.cost_breakdown
        ])),
        ("STORAGE USAGE", _frame(["Date", "Daily Storage (GB)", "Cumulative Storage (GB)"], [
            [row.date, _fixed(row.storage_gb, 4), _fixed(row.cumulative_gb, 4)]
            for row in report.storage_usage
        ])),
        ("STUDENT ENGAGEMENT", _frame(["Metric", "Value"], [
            ["Active Learners", engagement.active_learners],
            ["Average Videos per Student", _fixed(engagement.avg_videos_per_student)],
        ])),
        ("PEAK ACTIVITY HOURS", _frame(["Day of Week", "Hour", "Activity Count"], [
            [DAY_NAMES[row.day_of_week], f"{row.hour}:00", row.activity_count]
            for row in peak_hours
        ])),
        ("TOP PERFORMING VIDEOS", _frame(
            [
                "Video Title",
                "Source",
                "Views",
                "Avg Watch Time (min)",
                "Completion Rate (%)",
                "Duration (min)",
            ],
            [
                [
                    row.title,
                    row.source_type,
                    row.views,
                    _fixed(row.avg_watch_time_seconds / 60),
                    _fixed(row.completion_rate),
                    _fixed(row.duration_seconds / 60),
                ]
                for row in report.top_videos
            ]
        )),
    ]


def export_report_csv(report: AggregatedReport) -> str:
    """Each section is its title line, the table with a header row, then a blank line"""
    output = StringIO()
    for title, frame in build_report_sections(report):
        output.write(f"{title}\n")
        frame.to_csv(output, index=False, lineterminator="\n")
        output.write("\n")

    logger.debug(f"Exported report for creator {report.creator_id} ({generate_export_filename(report.date_range)})")
    return output.getvalue()


def generate_export_filename(date_range: DateRange) -> str:
    start = date_range.start.date().isoformat()
    end = date_range.end.date().isoformat()
    return f"video-analytics-{start}_to_{end}.csv"
