"""Unit tests for candidate duplicate detection."""

from src.etl.aggregation.schemas import ReviewKey
from src.etl.identity.duplicates import DuplicateDetector, DuplicateScan


def _key(outlet: str, slug: str, production: str = "hamilton") -> ReviewKey:
    return ReviewKey(production, outlet, slug)


class TestSlugDistance:
    @staticmethod
    def test_within_threshold() -> None:
        assert DuplicateDetector().slug_distance("jesse-green", "jesse-gren") == 1

    @staticmethod
    def test_beyond_threshold() -> None:
        assert DuplicateDetector().slug_distance("jesse-green", "jessica-gray") is None

    @staticmethod
    def test_short_slugs_not_matched() -> None:
        assert DuplicateDetector().slug_distance("ab-cd", "ab-ce") is None


class TestScan:
    @staticmethod
    def test_near_name_held_back() -> None:
        first = _key("NYT", "jesse-green")
        typo = _key("NYT", "jesse-gren")
        scan = DuplicateDetector().scan([first, typo])

        assert scan.accepted == [first]
        assert scan.held_back == {typo: first}
        assert len(scan.candidates) == 1
        candidate = scan.candidates[0]
        assert candidate.kind == "near_name"
        assert candidate.keys == [first.as_string(), typo.as_string()]
        assert candidate.distance == 1

    @staticmethod
    def test_near_name_of_existing_key() -> None:
        existing = _key("NYT", "jesse-green")
        typo = _key("NYT", "jesse-greeen")
        scan = DuplicateDetector().scan([typo], existing=[existing])
        assert scan.accepted == []
        assert scan.held_back == {typo: existing}

    @staticmethod
    def test_exact_repeat_accepted_once() -> None:
        key = _key("NYT", "jesse-green")
        scan = DuplicateDetector().scan([key, key], existing=[key])
        assert scan.accepted == [key]
        assert scan.candidates == []

    @staticmethod
    def test_near_name_at_different_outlet_not_held() -> None:
        first = _key("NYT", "jesse-green")
        other = _key("VULT", "jesse-gren")
        scan = DuplicateDetector().scan([first, other])
        assert scan.accepted == [first, other]
        assert scan.held_back == {}

    @staticmethod
    def test_cross_outlet_flagged_both_kept() -> None:
        vulture = _key("VULT", "sara-holdren")
        nyt = _key("NYT", "sara-holdren")
        scan = DuplicateDetector().scan([vulture, nyt])

        assert scan.accepted == [vulture, nyt]
        assert [c.kind for c in scan.candidates] == ["cross_outlet"]
        assert scan.candidates[0].keys == [nyt.as_string(), vulture.as_string()]

    @staticmethod
    def test_unknown_critic_never_cross_outlet() -> None:
        scan = DuplicateDetector().scan([_key("NYT", "unknown"), _key("VULT", "unknown")])
        assert scan.candidates == []

    @staticmethod
    def test_candidate_uses_display_names() -> None:
        first = _key("NYT", "jesse-green")
        typo = _key("NYT", "jesse-gren")
        names = {first: "Jesse Green", typo: "Jesse Gren"}
        scan = DuplicateDetector().scan([first, typo], names=names)
        assert scan.candidates[0].critic_names == ["Jesse Green", "Jesse Gren"]

    @staticmethod
    def test_log_summary_no_error() -> None:
        DuplicateScan().log_summary()
