"""
Constants used across the court rotation system.
"""

# Player skill levels
LEVEL_MIN = 1
LEVEL_MAX = 5
DEFAULT_LEVEL = 3
MAX_LEVEL_SPREAD = LEVEL_MAX - LEVEL_MIN

# Court composition
PLAYERS_PER_COURT = 4

# Candidate slice caps (bound the combination search)
MIXED_CANDIDATES_PER_GENDER = 6
DOUBLES_CANDIDATES = 8

# Scoring
FAIRNESS_WEIGHT = 0.3  # not user-configurable
FAIRNESS_GAMES_FACTOR = 0.05
OPPONENT_PAIR_WEIGHT = 0.3  # relative to a teammate pair

# Session defaults
DEFAULT_NUMBER_OF_COURTS = 2
DEFAULT_PLAY_TIME_MINUTES = 15
DEFAULT_REST_TIME_MINUTES = 0
DEFAULT_MIXED_RATIO = 50
DEFAULT_SKILL_BALANCE = 70
DEFAULT_PARTNER_VARIETY = 80

# Phase driver
TICK_INTERVAL_SECONDS = 10
MAX_SESSION_HOURS = 6
