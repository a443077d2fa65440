"""
Unit tests for CSV export of dashboard reports
"""

from datetime import datetime, timezone

import pytest

from app.schemas.analytics import (
    AggregatedReport,
    CostBreakdownItem,
    DailyViews,
    DateRange,
    DateRangeType,
    MetricTrends,
    PeakHour,
    ReportMetrics,
    StorageUsagePoint,
    StudentEngagementSummary,
    TopVideo,
    VideoCompletionRate,
)
from app.services.report_export import (
    build_report_sections,
    export_report_csv,
    generate_export_filename,
)


@pytest.fixture
def report(now):
    return AggregatedReport(
        creator_id="creator-1",
        range_type=DateRangeType.LAST_7_DAYS,
        date_range=DateRange(start=datetime(2026, 3, 8, 12, tzinfo=timezone.utc), end=now),
        generated_at=now,
        metrics=ReportMetrics(
            total_views=15,
            total_watch_time_seconds=5400,
            avg_completion_rate=35,
            total_videos=2,
            trends=MetricTrends(views=100, watch_time=-20, completion=5, videos=0),
        ),
        views_over_time=[DailyViews(date="2026-03-14", views=10), DailyViews(date="2026-03-15", views=5)],
        completion_rates=[VideoCompletionRate(video_id="a", title="Intro", completion_rate=70, views=10)],
        cost_breakdown=[CostBreakdownItem(method="whisper", total_cost=0.75, video_count=2)],
        storage_usage=[StorageUsagePoint(date="2026-03-15", storage_gb=0.5, cumulative_gb=1.5)],
        student_engagement=StudentEngagementSummary(
            active_learners=4,
            avg_videos_per_student=1.25,
            peak_hours=[
                PeakHour(day_of_week=6, hour=12, activity_count=3),
                PeakHour(day_of_week=0, hour=9, activity_count=8),
            ],
        ),
        top_videos=[TopVideo(
            id="a",
            title="Intro",
            duration_seconds=600,
            source_type="upload",
            views=10,
            avg_watch_time_seconds=90,
            completion_rate=70,
        )],
    )


@pytest.mark.unit
class TestReportSections:

    def test_section_order(self, report):
        titles = [title for title, _ in build_report_sections(report)]
        assert titles == [
            "SUMMARY METRICS",
            "TRENDS (vs Previous Period)",
            "VIEWS OVER TIME",
            "COMPLETION RATES BY VIDEO",
            "COST BREAKDOWN",
            "STORAGE USAGE",
            "STUDENT ENGAGEMENT",
            "PEAK ACTIVITY HOURS",
            "TOP PERFORMING VIDEOS",
        ]

    def test_summary_formats(self, report):
        sections = dict(build_report_sections(report))
        summary = sections["SUMMARY METRICS"].set_index("Metric")["Value"]

        assert summary["Total Watch Time (hours)"] == "1.50"
        assert summary["Average Completion Rate (%)"] == "35.00"

    def test_peak_hours_sorted_by_activity_with_day_names(self, report):
        peak = dict(build_report_sections(report))["PEAK ACTIVITY HOURS"]

        assert list(peak["Day of Week"]) == ["Sunday", "Saturday"]
        assert list(peak["Hour"]) == ["9:00", "12:00"]

    def test_peak_hours_are_capped(self, report):
        report.student_engagement.peak_hours = [
            PeakHour(day_of_week=i % 7, hour=i % 24, activity_count=i) for i in range(30)
        ]
        peak = dict(build_report_sections(report))["PEAK ACTIVITY HOURS"]

        assert len(peak) == 20
        assert peak["Activity Count"].iloc[0] == 29

    def test_top_videos_in_minutes(self, report):
        top = dict(build_report_sections(report))["TOP PERFORMING VIDEOS"]

        assert top["Avg Watch Time (min)"].iloc[0] == "1.50"
        assert top["Duration (min)"].iloc[0] == "10.00"


@pytest.mark.unit
class TestCsvExport:

    def test_sections_are_titled_and_separated(self, report):
        csv = export_report_csv(report)
        lines = csv.split("\n")

        assert lines[0] == "SUMMARY METRICS"
        assert lines[1] == "Metric,Value"
        assert lines[2] == "Total Views,15"
        assert "TRENDS (vs Previous Period)" in lines
        assert "Method,Total Cost ($),Video Count" in lines
        assert "whisper,0.75,2" in lines
        assert "2026-03-15,0.5000,1.5000" in lines

        # Blank line before every title after the first
        trends = lines.index("TRENDS (vs Previous Period)")
        assert lines[trends - 1] == ""

    def test_empty_report_keeps_headers(self, report):
        report.views_over_time = []
        report.top_videos = []
        csv = export_report_csv(report)

        assert "VIEWS OVER TIME\nDate,Views\n\n" in csv
        assert csv.rstrip("\n").endswith(
            "Video Title,Source,Views,Avg Watch Time (min),Completion Rate (%),Duration (min)"
        )

    def test_filename_uses_range_dates(self, report):
        assert generate_export_filename(report.date_range) == "video-analytics-2026-03-08_to_2026-03-15.csv"
