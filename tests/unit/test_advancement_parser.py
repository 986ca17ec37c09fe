"""Unit tests for troop_etl.advancement_parser."""

from __future__ import annotations

from datetime import date

import pytest

from troop_etl.advancement_parser import (
    AdvancementCategory,
    classify_advancement_type,
    parse_troop_advancement,
    rank_code_for,
    validate_parsed_data,
)
from troop_etl.tabular import UnsupportedExportError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

HEADER = (
    "BSA Member ID,First Name,Middle Name,Last Name,Advancement Type,Advancement,"
    "Version,Date Completed,Approved,Awarded,MarkedCompletedDate,Awarded Date"
)

EXPORT_LINES = [
    HEADER,                                                                              # 1
    "123,Alex,,Doe,Rank,Tenderfoot,2016,01/10/2023,1,1,,01/15/2023",                     # 2
    "123,Alex,,Doe,Rank,Tenderfoot,2016,01/10/2023,1,1,,01/20/2023",                     # 3
    "123,Alex,,Doe,Tenderfoot Rank Requirements,1a,2016,01/05/2023,1,0,,",               # 4
    "123,Alex,,Doe,Merit Badges,Camping MB,2024,,1,1,,03/01/2024",                       # 5
    "123,Alex,,Doe,Camping Merit Badge Requirements,2b[1],2024,02/01/2024,1,0,,",        # 6
    "123,Alex,,Doe,Awards,Polar Bear,,,,,,",                                             # 7
    "456,Sam,,Roe,Rank,Scout,,,,0,,",                                                    # 8
    "456,Sam,,Roe,Second Class Rank Requirements,3,,,0,0,,",                             # 9
    "456,Sam,,Roe,First Aid Merit Badge Requirements,1,2024,,1,0,02/02/2024,",           # 10
    "abc,Bad,,Row,Rank,Star,,,,1,,01/01/2024",                                           # 11
    "",                                                                                  # 12
    "123,Alex",                                                                          # 13
]


@pytest.fixture
def parsed():
    return parse_troop_advancement("\n".join(EXPORT_LINES) + "\n")


# ---------------------------------------------------------------------------
# classify_advancement_type
# ---------------------------------------------------------------------------

class TestClassifyAdvancementType:
    def test_rank(self):
        assert classify_advancement_type("Rank").category == AdvancementCategory.RANK

    def test_merit_badges(self):
        assert classify_advancement_type("Merit Badges").category == AdvancementCategory.MERIT_BADGE

    def test_rank_requirements(self):
        c = classify_advancement_type("Second Class Rank Requirements")
        assert c.category == AdvancementCategory.RANK_REQUIREMENT
        assert c.rank_code == "second_class"

    def test_star_scout_rank_requirements(self):
        assert classify_advancement_type("Star Scout Rank Requirements").rank_code == "star"

    def test_badge_requirements(self):
        c = classify_advancement_type("Fish & Wildlife Management Merit Badge Requirements")
        assert c.category == AdvancementCategory.MERIT_BADGE_REQUIREMENT
        assert c.badge_name == "Fish & Wildlife Management"

    def test_other(self):
        assert classify_advancement_type("Awards").category == AdvancementCategory.OTHER
        assert classify_advancement_type("Webelos Adventures").category == AdvancementCategory.OTHER

    def test_none(self):
        assert classify_advancement_type(None).category == AdvancementCategory.OTHER


class TestRankCodeFor:
    def test_variants(self):
        assert rank_code_for("Eagle Scout") == "eagle"
        assert rank_code_for("life  rank") == "life"
        assert rank_code_for("First Class") == "first_class"

    def test_unknown(self):
        assert rank_code_for("Arrow of Light") is None
        assert rank_code_for(None) is None


# ---------------------------------------------------------------------------
# parse_troop_advancement
# ---------------------------------------------------------------------------

class TestParseTroopAdvancement:
    def test_same_text_parses_identically(self):
        text = "\n".join(EXPORT_LINES) + "\n"
        first, second = parse_troop_advancement(text), parse_troop_advancement(text)
        assert first == second
        assert list(first.scouts) == list(second.scouts)

    def test_scouts_keyed_by_member_id(self, parsed):
        assert list(parsed.scouts) == ["123", "456"]
        alex = parsed.scouts["123"]
        assert alex.full_name == "Alex Doe"

    def test_rank_first_occurrence_wins(self, parsed):
        ranks = parsed.scouts["123"].ranks
        assert len(ranks) == 1
        assert ranks[0].rank_code == "tenderfoot"
        assert ranks[0].rank_name == "Tenderfoot"
        assert ranks[0].version == "2016"
        assert ranks[0].awarded_date == date(2023, 1, 15)

    def test_rank_requirement(self, parsed):
        (req,) = parsed.scouts["123"].rank_requirements
        assert req.rank_code == "tenderfoot"
        assert req.requirement_number == "1a"
        assert req.completed_date == date(2023, 1, 5)

    def test_merit_badge(self, parsed):
        (badge,) = parsed.scouts["123"].merit_badges
        assert badge.badge_code == "camping"
        assert badge.badge_name == "Camping MB"
        assert badge.awarded_date == date(2024, 3, 1)

    def test_badge_requirement(self, parsed):
        (req,) = parsed.scouts["123"].merit_badge_requirements
        assert req.badge_code == "camping"
        assert req.requirement_number == "2b[1]"
        assert req.version == "2024"

    def test_approved_requirement_uses_marked_date(self, parsed):
        (req,) = parsed.scouts["456"].merit_badge_requirements
        assert req.badge_code == "first_aid"
        assert req.completed_date == date(2024, 2, 2)

    def test_unawarded_rank_skipped(self, parsed):
        assert parsed.scouts["456"].ranks == []
        assert parsed.scouts["456"].rank_requirements == []

    def test_summary(self, parsed):
        s = parsed.summary
        assert s.total_rows == 11
        assert s.scout_count == 2
        assert s.rank_count == 1
        assert s.rank_requirement_count == 1
        assert s.badge_count == 1
        assert s.badge_requirement_count == 2
        assert s.duplicate_rows == 1
        assert s.out_of_scope_rows == 1
        assert s.skipped_rows == 4

    def test_row_errors(self, parsed):
        assert parsed.errors == [
            "line 11: invalid member id 'abc'",
            "line 13: too few fields (2)",
        ]

    def test_header_spacing_and_case_tolerated(self):
        text = (
            "bsa_member_id,first_name,last_name,advancement_type,advancement,awarded,awarded_date\n"
            "9,Kim,Park,Rank,Star Scout,1,05/05/2025\n"
        )
        parsed = parse_troop_advancement(text)
        assert parsed.scouts["9"].ranks[0].rank_code == "star"

    def test_badge_name_suffix_variants_collapse(self):
        text = "\n".join([
            HEADER,
            "7,Lee,,Kim,Merit Badges,Camping MB,2024,,1,1,,03/01/2024",
            "7,Lee,,Kim,Merit Badges,Camping Merit Badge,2024,,1,1,,04/01/2024",
        ])
        parsed = parse_troop_advancement(text)
        (badge,) = parsed.scouts["7"].merit_badges
        assert badge.awarded_date == date(2024, 3, 1)
        assert parsed.summary.duplicate_rows == 1

    def test_missing_columns_raises(self):
        with pytest.raises(UnsupportedExportError, match="missing columns"):
            parse_troop_advancement("First Name,Last Name\nA,B\n")

    def test_empty_raises(self):
        with pytest.raises(UnsupportedExportError):
            parse_troop_advancement("\n\n")


class TestValidateParsedData:
    def test_clean_file(self, parsed):
        problems = validate_parsed_data(parsed)
        assert problems == parsed.errors

    def test_no_scouts(self):
        problems = validate_parsed_data(parse_troop_advancement(HEADER + "\n"))
        assert "No scouts found in the file" in problems
        assert "No advancement data found in the file" in problems
