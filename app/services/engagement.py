"""
Engagement metric calculations

Pure functions over in-memory activity and metric values. Nothing here
touches the event store; callers load the data and pass it in.
"""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from app.schemas.engagement import (
    Activity,
    ActiveUserData,
    Cohort,
    CohortMember,
    CohortRetention,
    EngagementBreakdown,
    EngagementScore,
    SessionDurationBucket,
    StudentMetrics,
)

SCORE_WEIGHTS = {
    "video_completion": 0.30,
    "chat_interaction": 0.25,
    "login_frequency": 0.20,
    "course_progress": 0.25,
}

# Normalization ceilings: 10 chat messages/day and 7 logins/week score 100%
CHAT_MESSAGES_PER_DAY_MAX = 10
LOGINS_PER_WEEK_MAX = 7

RETENTION_WEEKS = 12

SESSION_BUCKETS = [
    ("0-5m", 0, 5),
    ("5-15m", 5, 15),
    ("15-30m", 15, 30),
    ("30-60m", 30, 60),
    ("60m+", 60, float("inf")),
]


def _round_half_up(value: float) -> int:
    # Math.round semantics; Python's round() is banker's rounding
    return int((value + 0.5) // 1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def percentage_change(current: float, previous: float) -> int:
    """
    Percent change from previous to current, rounded to an integer.

    A zero baseline reports 100 when anything happened and 0 otherwise.
    """
    if previous == 0:
        return 100 if current > 0 else 0
    return _round_half_up(((current - previous) / previous) * 100)


def calculate_engagement_score(metrics: StudentMetrics) -> EngagementScore:
    """
    Composite 0-100 score.

    The total is rounded from the unrounded weighted sum while each breakdown
    component is rounded on its own, so the breakdown may not add up to the
    total exactly.
    """
    chat_score = min(metrics.chat_interaction_frequency / CHAT_MESSAGES_PER_DAY_MAX, 1) * 100
    login_score = min(metrics.login_frequency / LOGINS_PER_WEEK_MAX, 1) * 100

    weighted = {
        "video_completion": metrics.video_completion_rate * SCORE_WEIGHTS["video_completion"],
        "chat_interaction": chat_score * SCORE_WEIGHTS["chat_interaction"],
        "login_frequency": login_score * SCORE_WEIGHTS["login_frequency"],
        "course_progress": metrics.course_progress_rate * SCORE_WEIGHTS["course_progress"],
    }

    total = _round_half_up(sum(weighted.values()))

    return EngagementScore(
        total=max(0, min(total, 100)),
        breakdown=EngagementBreakdown(
            **{name: _round_half_up(value) for name, value in weighted.items()}
        ),
    )


def calculate_retention_rate(cohorts: List[CohortRetention]) -> int:
    """Mean over cohorts of each cohort's mean weekly retention"""
    if not cohorts:
        return 0

    total = 0.0
    for cohort in cohorts:
        weeks = cohort.weeks()
        total += sum(weeks) / len(weeks)

    return _round_half_up(total / len(cohorts))


def _distinct_students(activities: Iterable[Activity]) -> int:
    return len({activity.student_id for activity in activities})


def calculate_dau(activities: List[Activity], now: Optional[datetime] = None) -> int:
    """Distinct students active in the trailing 24 hours"""
    now = now or _utcnow()
    since = now - timedelta(hours=24)
    return _distinct_students(a for a in activities if since <= a.timestamp <= now)


def calculate_mau(activities: List[Activity], now: Optional[datetime] = None) -> int:
    """Distinct students active in the trailing 30 days"""
    now = now or _utcnow()
    since = now - timedelta(days=30)
    return _distinct_students(a for a in activities if since <= a.timestamp <= now)


def group_activities_by_date(activities: List[Activity]) -> Dict[str, List[Activity]]:
    grouped: Dict[str, List[Activity]] = defaultdict(list)
    for activity in activities:
        grouped[activity.timestamp.astimezone(timezone.utc).date().isoformat()].append(activity)
    return dict(grouped)


def calculate_active_users_over_time(
    activities: List[Activity],
    days: int,
    now: Optional[datetime] = None
) -> List[ActiveUserData]:
    """
    DAU, MAU and day-over-day DAU change for each of the trailing `days`
    calendar days (UTC), oldest first.

    MAU for a day covers the 30 days ending at that day's close, so a day's
    DAU is always contained in its MAU.
    """
    now = now or _utcnow()
    today = now.astimezone(timezone.utc).date()
    by_date = group_activities_by_date(activities)

    def dau_for(day) -> int:
        return _distinct_students(by_date.get(day.isoformat(), []))

    data: List[ActiveUserData] = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        day_end = datetime(day.year, day.month, day.day, tzinfo=timezone.utc) + timedelta(days=1)
        window_start = day_end - timedelta(days=30)

        dau = dau_for(day)
        mau = _distinct_students(a for a in activities if window_start <= a.timestamp < day_end)
        previous_dau = dau_for(day - timedelta(days=1))

        data.append(ActiveUserData(
            date=day.isoformat(),
            dau=dau,
            mau=mau,
            change=percentage_change(dau, previous_dau),
        ))

    return data


def calculate_session_durations(session_lengths: List[float]) -> List[SessionDurationBucket]:
    """
    Histogram of session lengths in minutes over half-open buckets.
    Negative lengths match no bucket and are ignored.
    """
    buckets = [
        SessionDurationBucket(bucket=label, range=(low, high))
        for label, low, high in SESSION_BUCKETS
    ]

    for duration in session_lengths:
        for bucket in buckets:
            low, high = bucket.range
            if low <= duration < high:
                bucket.count += 1
                break

    return buckets


def calculate_average_session_duration(session_lengths: List[float]) -> int:
    if not session_lengths:
        return 0
    return _round_half_up(sum(session_lengths) / len(session_lengths))


def normalize_metric(value: float, maximum: float) -> int:
    """Scale value against maximum onto 0-100, capped at 100"""
    if maximum <= 0:
        return 0
    return min(_round_half_up((value / maximum) * 100), 100)


def _cohort_label(start: datetime) -> str:
    return f"Week of {start.strftime('%b')} {start.day}"


def calculate_cohort_retention(cohorts: List[Cohort]) -> List[CohortRetention]:
    """
    Weekly retention matrix: week N counts members with any activity in
    [start + 7N days, start + 7N + 7 days), start being the earliest join.
    """
    results: List[CohortRetention] = []

    for cohort in cohorts:
        if not cohort.students:
            continue

        cohort_start = min(member.join_date for member in cohort.students)
        member_ids = {member.id for member in cohort.students}

        activity_by_student: Dict[str, List[datetime]] = defaultdict(list)
        for activity in cohort.activities:
            if activity.student_id in member_ids:
                activity_by_student[activity.student_id].append(activity.timestamp)

        weeks = {"week0": 100}
        for week in range(1, RETENTION_WEEKS + 1):
            week_start = cohort_start + timedelta(days=week * 7)
            week_end = week_start + timedelta(days=7)

            # Members are counted per row, so a student listed twice counts twice
            active = sum(
                1 for member in cohort.students
                if any(week_start <= ts < week_end for ts in activity_by_student[member.id])
            )
            weeks[f"week{week}"] = _round_half_up(active / len(cohort.students) * 100)

        results.append(CohortRetention(cohort=_cohort_label(cohort_start), **weeks))

    return results


def week_start(ts: datetime) -> datetime:
    """Midnight UTC of the Sunday that opens ts's week"""
    ts = ts.astimezone(timezone.utc)
    day = ts.date() - timedelta(days=ts.isoweekday() % 7)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def group_cohorts(members: List[CohortMember], activities: List[Activity]) -> List[Cohort]:
    """
    Group students into cohorts by join week, oldest first. Every cohort
    shares the creator's full activity list; retention filters it per member.
    """
    grouped: Dict[str, List[CohortMember]] = {}
    for member in sorted(members, key=lambda m: m.join_date):
        cohort_id = week_start(member.join_date).date().isoformat()
        grouped.setdefault(cohort_id, []).append(member)

    return [
        Cohort(cohort_id=cohort_id, students=students, activities=activities)
        for cohort_id, students in grouped.items()
    ]


def calculate_returning_rate(activities: List[Activity], now: Optional[datetime] = None) -> float:
    """
    Percent of students active 7 to 14 days ago who were active again in
    the last 7 days, to one decimal.
    """
    now = now or _utcnow()
    week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)

    previous = {a.student_id for a in activities if two_weeks_ago <= a.timestamp < week_ago}
    if not previous:
        return 0.0
    recent = {a.student_id for a in activities if week_ago <= a.timestamp <= now}

    return _round_half_up(len(previous & recent) / len(previous) * 1000) / 10
