"""
Selection engine. Partitions an available-player pool into court groupings.

Pure and synchronous: no I/O, no process-wide state. Callers load the pool,
courts and partner history from the store, call select_players(), and write
the result back.

Factors:
- Fairness: players with the fewest (effective) games get priority; a fixed
  fairness term in the score rewards groupings with fewer total games.
- Mixed ratio: target % of courts played as 2M+2F.
- Skill balance: team averages should match.
- Partner variety: avoid repeat teammates (and, weighted less, opponents).
"""

import itertools
import logging
import math
import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from courtrotation.utils.constants import (
    DOUBLES_CANDIDATES,
    FAIRNESS_GAMES_FACTOR,
    FAIRNESS_WEIGHT,
    MAX_LEVEL_SPREAD,
    MIXED_CANDIDATES_PER_GENDER,
    OPPONENT_PAIR_WEIGHT,
    PLAYERS_PER_COURT,
)

logger = logging.getLogger(__name__)

MALE = "male"
FEMALE = "female"
MIXED = "mixed"
DOUBLES = "doubles"

PairLookup = Dict[Tuple[int, int], int]


@dataclass
class PoolPlayer:
    """Per-session view of a player as seen by the engine."""

    id: int
    gender: Optional[str]  # 'male' | 'female' | None (unknown, wildcard)
    level: int
    games_played: int = 0
    is_on_court: bool = False

    @property
    def effective_games(self) -> int:
        # Virtual extra game for someone still mid-game
        return self.games_played + (1 if self.is_on_court else 0)


@dataclass
class PartnerPair:
    player1_id: int
    player2_id: int
    times_paired: int


@dataclass
class AlgorithmConfig:
    """User-tunable selection settings (all ratios are percentages 0-100)."""

    mixed_ratio: int = 50
    skill_balance: int = 70
    partner_variety: int = 80
    strict_gender: bool = False

    def validate(self) -> None:
        """Raise ValueError if any setting is out of range."""
        for name in ("mixed_ratio", "skill_balance", "partner_variety"):
            value = getattr(self, name)
            if value is None or not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100, got {value!r}")


@dataclass
class CourtSelection:
    """One court's grouping for a round."""

    court_index: int
    game_type: str
    team_a: Tuple[PoolPlayer, PoolPlayer]
    team_b: Tuple[PoolPlayer, PoolPlayer]

    @property
    def players(self) -> List[PoolPlayer]:
        return [*self.team_a, *self.team_b]


@dataclass
class _Combo:
    team_a: Tuple[PoolPlayer, PoolPlayer]
    team_b: Tuple[PoolPlayer, PoolPlayer]
    score: float = field(default=float("-inf"))

    @property
    def players(self) -> List[PoolPlayer]:
        return [*self.team_a, *self.team_b]


# ---------------------------------------------------------------------------
# Partner history
# ---------------------------------------------------------------------------


def pair_key(a: int, b: int) -> Tuple[int, int]:
    """Order-independent key for a pair of player ids (smaller id first)."""
    return (a, b) if a < b else (b, a)


def build_pair_lookup(history: Iterable[PartnerPair]) -> PairLookup:
    """Map canonical pair key -> times paired."""
    lookup: PairLookup = {}
    for h in history:
        lookup[pair_key(h.player1_id, h.player2_id)] = h.times_paired
    return lookup


def get_pair_penalty(id1: int, id2: int, lookup: PairLookup) -> float:
    """
    Repeat penalty for a pair: 0 if never paired, approaching (never reaching) 1.

    Diminishing returns: 1 repeat = 0.5, 2 = 0.67, 3 = 0.75, ...
    """
    times = lookup.get(pair_key(id1, id2), 0)
    return times / (times + 1)


def extract_pairs(assignments: Sequence[CourtSelection]) -> List[Tuple[int, int]]:
    """All teammate and opponent pairs (6 per court), smaller id first."""
    pairs: List[Tuple[int, int]] = []
    for court in assignments:
        for a, b in itertools.combinations(court.players, 2):
            pairs.append(pair_key(a.id, b.id))
    return pairs


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def score_assignment(
    team_a: Sequence[PoolPlayer],
    team_b: Sequence[PoolPlayer],
    config: AlgorithmConfig,
    pair_lookup: PairLookup,
) -> float:
    """Score a 2v2 grouping. Higher is better."""
    # 1. Skill balance: compare team average levels
    avg_a = (team_a[0].level + team_a[1].level) / 2
    avg_b = (team_b[0].level + team_b[1].level) / 2
    skill_score = 1 - abs(avg_a - avg_b) / MAX_LEVEL_SPREAD
    skill_score = min(1.0, max(0.0, skill_score))

    # 2. Partner variety: teammates count fully, opponents at a reduced weight
    teammate_penalty = get_pair_penalty(team_a[0].id, team_a[1].id, pair_lookup) + get_pair_penalty(
        team_b[0].id, team_b[1].id, pair_lookup
    )
    opponent_penalty = (
        sum(get_pair_penalty(a.id, b.id, pair_lookup) for a in team_a for b in team_b) / 4
    )
    variety_score = 1 - (teammate_penalty + opponent_penalty * OPPONENT_PAIR_WEIGHT) / (
        2 + OPPONENT_PAIR_WEIGHT
    )

    # 3. Fairness: groupings of players with fewer games score higher
    total_games = sum(p.games_played for p in (*team_a, *team_b))
    fairness_score = 1 / (1 + total_games * FAIRNESS_GAMES_FACTOR)

    return (
        config.skill_balance / 100 * skill_score
        + config.partner_variety / 100 * variety_score
        + FAIRNESS_WEIGHT * fairness_score
    )


# ---------------------------------------------------------------------------
# Combo search
# ---------------------------------------------------------------------------


def _best_of(
    splits: Iterable[Tuple[Tuple[PoolPlayer, PoolPlayer], Tuple[PoolPlayer, PoolPlayer]]],
    config: AlgorithmConfig,
    pair_lookup: PairLookup,
) -> Optional[_Combo]:
    best: Optional[_Combo] = None
    for team_a, team_b in splits:
        score = score_assignment(team_a, team_b, config, pair_lookup)
        if best is None or score > best.score:
            best = _Combo(team_a, team_b, score)
    return best


def pick_best_mixed_combo(
    males: Sequence[PoolPlayer],
    females: Sequence[PoolPlayer],
    config: AlgorithmConfig,
    pair_lookup: PairLookup,
) -> Optional[_Combo]:
    """Best 2M+2F grouping with each team one man and one woman, or None."""
    top_m = list(males[:MIXED_CANDIDATES_PER_GENDER])
    top_f = list(females[:MIXED_CANDIDATES_PER_GENDER])
    if len(top_m) < 2 or len(top_f) < 2:
        return None

    def splits():
        for m1, m2 in itertools.combinations(top_m, 2):
            for f1, f2 in itertools.combinations(top_f, 2):
                yield (m1, f1), (m2, f2)
                yield (m1, f2), (m2, f1)

    return _best_of(splits(), config, pair_lookup)


def pick_best_four(
    candidates: Sequence[PoolPlayer],
    config: AlgorithmConfig,
    pair_lookup: PairLookup,
) -> Optional[_Combo]:
    """Best 4-of-N grouping over all three team splits of every quartet."""
    top = list(candidates[:DOUBLES_CANDIDATES])
    if len(top) < PLAYERS_PER_COURT:
        return None

    def splits():
        for a, b, c, d in itertools.combinations(top, 4):
            yield (a, b), (c, d)
            yield (a, c), (b, d)
            yield (a, d), (b, c)

    return _best_of(splits(), config, pair_lookup)


def pick_best_doubles_combo(
    pool: Sequence[PoolPlayer],
    config: AlgorithmConfig,
    pair_lookup: PairLookup,
) -> Optional[_Combo]:
    """
    Best doubles grouping: same-gender first, any four only when strict_gender is off.
    """
    males = [p for p in pool if p.gender == MALE]
    females = [p for p in pool if p.gender == FEMALE]

    gender_pools = (males, females) if len(males) >= len(females) else (females, males)
    for gender_pool in gender_pools:
        if len(gender_pool) < PLAYERS_PER_COURT:
            continue
        combo = pick_best_four(gender_pool, config, pair_lookup)
        if combo:
            return combo

    if not config.strict_gender:
        return pick_best_four(pool, config, pair_lookup)
    return None


# ---------------------------------------------------------------------------
# Game-type planner
# ---------------------------------------------------------------------------


def decide_game_types(
    num_courts: int, mixed_ratio: int, players: Sequence[PoolPlayer]
) -> List[str]:
    """Plan 'mixed' / 'doubles' per court from the ratio target and gender supply."""
    males = sum(1 for p in players if p.gender == MALE)
    females = sum(1 for p in players if p.gender == FEMALE)

    # Each mixed court consumes exactly 2M + 2F
    max_mixed = min(males // 2, females // 2, num_courts)
    # Round half up
    target_mixed = int(math.floor(mixed_ratio / 100 * num_courts + 0.5))
    actual_mixed = min(target_mixed, max_mixed)

    return [MIXED] * actual_mixed + [DOUBLES] * (num_courts - actual_mixed)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def select_players(
    players: Sequence[PoolPlayer],
    num_courts: int,
    config: AlgorithmConfig,
    partner_history: Iterable[PartnerPair],
    rng: Optional[random.Random] = None,
) -> List[CourtSelection]:
    """
    Select players for up to num_courts courts.

    Never raises for supply shortfalls: returns fewer (or no) courts instead.
    Ties on effective games are broken randomly on every call.
    """
    if len(players) < PLAYERS_PER_COURT or num_courts <= 0:
        return []

    rng = rng or random.Random()
    ordered = sorted(players, key=lambda p: (p.effective_games, rng.random()))

    actual_courts = min(num_courts, len(ordered) // PLAYERS_PER_COURT)
    if actual_courts == 0:
        return []

    selected = ordered[: actual_courts * PLAYERS_PER_COURT]
    game_types = decide_game_types(actual_courts, config.mixed_ratio, selected)
    pair_lookup = build_pair_lookup(partner_history)

    assignments = _assign_to_courts(selected, game_types, config, pair_lookup)
    logger.debug(
        "Selected %d court(s) from a pool of %d (planned %s)",
        len(assignments),
        len(players),
        game_types,
    )
    return assignments


def _assign_to_courts(
    players: List[PoolPlayer],
    game_types: List[str],
    config: AlgorithmConfig,
    pair_lookup: PairLookup,
) -> List[CourtSelection]:
    assignments: List[CourtSelection] = []
    used = set()

    def take(index: int, game_type: str, combo: _Combo) -> None:
        used.update(p.id for p in combo.players)
        assignments.append(CourtSelection(index, game_type, combo.team_a, combo.team_b))

    # First pass: mixed courts, downgrading to doubles on short supply
    for i, game_type in enumerate(game_types):
        if game_type != MIXED:
            continue
        avail_m = [p for p in players if p.gender == MALE and p.id not in used]
        avail_f = [p for p in players if p.gender == FEMALE and p.id not in used]
        combo = pick_best_mixed_combo(avail_m, avail_f, config, pair_lookup)
        if combo is None:
            game_types[i] = DOUBLES
            continue
        take(i, MIXED, combo)

    # Second pass: doubles courts, last resort mixed, else leave empty
    for i, game_type in enumerate(game_types):
        if game_type != DOUBLES:
            continue
        remaining = [p for p in players if p.id not in used]
        if len(remaining) < PLAYERS_PER_COURT:
            break

        combo = pick_best_doubles_combo(remaining, config, pair_lookup)
        if combo is not None:
            take(i, DOUBLES, combo)
            continue

        combo = pick_best_mixed_combo(
            [p for p in remaining if p.gender == MALE],
            [p for p in remaining if p.gender == FEMALE],
            config,
            pair_lookup,
        )
        if combo is not None:
            take(i, MIXED, combo)

    assignments.sort(key=lambda a: a.court_index)
    return assignments
