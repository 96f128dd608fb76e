from exam_prep.repositories import WeekContentRepository
from exam_prep.services import WeekContentImportService


def _week(number, year=2026, **extra):
    item = {
        "week_number": number,
        "year": year,
        "title": f"Semana {number}",
        "questions": [
            {"id": f"w{number}-q1", "prompt": "Qual artigo trata dos direitos sociais?", "choices": ["5", "6"], "correct_choice": "6"},
        ],
    }
    item.update(extra)
    return item


def test_import_creates_sets_and_reports_bad_items(session):
    result = WeekContentImportService(session).import_sets("contest-1", [
        _week(1),
        _week(2),
        {"week_number": 0, "year": 2026},
        {"year": 2026, "questions": []},
    ])
    assert result["created"] == 2
    assert result["skipped"] == 0
    assert [e["index"] for e in result["errors"]] == [2, 3]
    week = WeekContentRepository(session).get_week("contest-1", 2)
    assert week.title == "Semana 2"
    assert week.questions[0]["correct_choice"] == "6"
    assert week.questions[0]["explanation"] is None


def test_import_skips_existing_weeks(session):
    svc = WeekContentImportService(session)
    svc.import_sets("contest-1", [_week(1)])
    result = svc.import_sets("contest-1", [_week(1, title="Outra"), _week(1, year=2027)])
    assert result == {"created": 1, "skipped": 1, "errors": []}
    assert len(WeekContentRepository(session).list_for_contest("contest-1")) == 2


def test_import_dry_run_writes_nothing(session):
    result = WeekContentImportService(session).import_sets("contest-1", [_week(1)], dry_run=True)
    assert result["created"] == 1
    assert WeekContentRepository(session).list_for_contest("contest-1") == []
