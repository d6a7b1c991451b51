from animesub.models import ENGLISH, ORIGINAL
from animesub.strategies import normalize_title, plan_strategies


def _pairs(strategies):
    return [(s.variant, s.query) for s in strategies]


def test_normalize_title():
    assert normalize_title("  Shingeki-no   Kyojin ") == "Shingeki no Kyojin"


def test_movie_gets_bare_title_only():
    assert _pairs(plan_strategies("Kimi no Na wa")) == [(ORIGINAL, "Kimi no Na wa"), (ENGLISH, "Kimi no Na wa")]


def test_first_season_episode():
    assert _pairs(plan_strategies("Shingeki-no Kyojin", 1, 5)) == [
        (ORIGINAL, "Shingeki no Kyojin ep05"),
        (ENGLISH, "Shingeki no Kyojin ep05"),
        (ORIGINAL, "Shingeki no Kyojin"),
        (ENGLISH, "Shingeki no Kyojin"),
    ]


def test_later_season_goes_from_specific_to_bare():
    assert _pairs(plan_strategies("Mob Psycho 100", 2, 3)) == [
        (ENGLISH, "Mob Psycho 100 Season 2 ep03"),
        (ENGLISH, "Mob Psycho 100 2 ep03"),
        (ENGLISH, "Mob Psycho 100 S2 ep03"),
        (ORIGINAL, "Mob Psycho 100 ep03"),
        (ENGLISH, "Mob Psycho 100 ep03"),
        (ENGLISH, "Mob Psycho 100 Season 2"),
        (ENGLISH, "Mob Psycho 100 2"),
        (ORIGINAL, "Mob Psycho 100"),
        (ENGLISH, "Mob Psycho 100"),
    ]


def test_priorities_follow_order_and_no_duplicates():
    strategies = plan_strategies("Title", 2, 112)
    assert [s.priority for s in strategies] == list(range(len(strategies)))
    assert len(set(_pairs(strategies))) == len(strategies)
    assert strategies[0].query == "Title Season 2 ep112"
