from datetime import date

import pytest

from observerflow.core.exceptions import InputValidationError
from observerflow.services.schedule_revision import shift_exam_date, validate_academic_year


def test_accepts_consecutive_years():
    assert validate_academic_year("2023-2024") == (2023, 2024)


@pytest.mark.parametrize(
    ("value", "message"),
    [
        ("2024-2023", "Invalid academic year range. Second year must be the year after the first year"),
        ("2023-2025", "Invalid academic year range. Second year must be the year after the first year"),
        ("23-24", "Academic year must be in format YYYY-YYYY"),
        ("", "Academic year must be in format YYYY-YYYY"),
    ],
)
def test_rejects_malformed_years(value, message):
    with pytest.raises(InputValidationError) as exc_info:
        validate_academic_year(value)
    assert exc_info.value.message == message
    assert exc_info.value.status_code == 400
    assert exc_info.value.details["phase"] == "check"


def test_leap_day_moves_to_feb_28_in_non_leap_year():
    assert shift_exam_date(date(2024, 2, 29), "2024-2025", "2025-2026") == date(2025, 2, 28)


def test_leap_day_kept_when_target_year_is_leap():
    assert shift_exam_date(date(2024, 2, 29), "2024-2025", "2028-2029") == date(2028, 2, 29)


def test_regular_date_keeps_month_and_day():
    assert shift_exam_date(date(2025, 1, 15), "2024-2025", "2026-2027") == date(2027, 1, 15)


def test_shift_can_move_backwards():
    assert shift_exam_date(date(2024, 2, 29), "2024-2025", "2022-2023") == date(2022, 2, 28)


def test_shift_validates_both_years():
    with pytest.raises(InputValidationError):
        shift_exam_date(date(2024, 2, 29), "2024-2025", "2025-2027")
