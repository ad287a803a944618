"""Ok / Err folding."""

from outcomes import BranchReport, Err, Ok, attempt


def test_attempt_captures_exceptions():
    assert attempt("x", lambda: 5) == Ok(5)
    err = attempt("Ad 1", lambda: 1 / 0, kind="ad")
    assert isinstance(err, Err)
    assert err.as_dict() == {"entity": "Ad 1", "error": "division by zero", "type": "ad"}


def test_report_keeps_creation_order():
    report = BranchReport()
    assert report.add(Ok("campaign"))
    assert not report.add(Err("adset", "boom"))
    child = BranchReport(created=["ad"])
    report.merge(child)
    assert report.created == ["campaign", "ad"]
    assert [e.entity for e in report.errors] == ["adset"]
