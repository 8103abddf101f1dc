import logging
import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))
from kistenlager import views  # noqa: E402
from kistenlager.config import STATUS_COLORS, VARIETY_COLORS  # noqa: E402

TODAY = date(2024, 5, 31)


@pytest.mark.parametrize(
    "days_ago,expected",
    [
        (0, views.BoxStatus.UPDATED),
        (30, views.BoxStatus.UPDATED),
        (31, views.BoxStatus.STALE),
        (365, views.BoxStatus.STALE),
        (-3, views.BoxStatus.UPDATED),
    ],
)
def test_status_by_age(days_ago, expected):
    box = {"id": 1, "date": (TODAY - timedelta(days=days_ago)).isoformat()}
    assert views.box_status(box, today=TODAY) is expected


def test_undated_box_is_default():
    assert views.box_status({"id": 1, "varieties": ["Laura"]}, today=TODAY) is views.BoxStatus.DEFAULT


def test_datetime_strings_are_accepted():
    box = {"id": 1, "date": "2024-05-30T08:15:00"}
    assert views.box_status(box, today=TODAY) is views.BoxStatus.UPDATED


def test_unreadable_date_is_logged(caplog):
    with caplog.at_level(logging.WARNING):
        status = views.box_status({"id": 7, "date": "gestern"}, today=TODAY)
    assert status is views.BoxStatus.DEFAULT
    assert "Box 7 has an unreadable date" in caplog.text


def test_labels():
    assert views.status_label(views.BoxStatus.DEFAULT) == "Leer"
    assert views.status_label(views.BoxStatus.UPDATED) == "Aktualisiert"
    assert views.status_label(views.BoxStatus.STALE) == "Überfällig"


def test_color_of_updated_box_follows_first_variety():
    box = {"id": 1, "date": "2024-05-20", "varieties": ["Laura", "Hermes"]}
    assert views.box_color(box, today=TODAY) == VARIETY_COLORS["Laura"]


def test_color_of_updated_box_without_known_variety():
    assert views.box_color({"id": 1, "date": "2024-05-20"}, today=TODAY) == STATUS_COLORS["updated"]
    box = {"id": 1, "date": "2024-05-20", "varieties": ["Belana"]}
    assert views.box_color(box, today=TODAY) == STATUS_COLORS["updated"]


def test_color_of_stale_and_default_boxes_ignores_variety():
    stale = {"id": 1, "date": "2024-01-02", "varieties": ["Laura"]}
    assert views.box_color(stale, today=TODAY) == STATUS_COLORS["stale"]
    assert views.box_color({"id": 2, "varieties": ["Laura"]}, today=TODAY) == STATUS_COLORS["default"]
