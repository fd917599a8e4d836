"""Tests for guess attempts, player progress and the client-side log."""

import pytest

from linkboard.core.progress import (
    GameOverError,
    GuessAttempt,
    InvalidGuessError,
    PlayerProgress,
    ProgressLog,
    history_from_dicts,
    terminal_prefix,
    validate_history,
)

from conftest import EASY, HARD, MEDIUM, TRICKY, hit, losing_history, miss, winning_history


class TestGuessAttempt:
    def test_wire_shape(self):
        attempt = hit(EASY, 0, ts=1700000000000)
        assert attempt.to_dict() == {
            "words": ["A", "B", "C", "D"],
            "correct": True,
            "difficulty": 0,
            "timestamp": 1700000000000,
        }

    def test_from_dict_drops_difficulty_on_miss(self):
        attempt = GuessAttempt.from_dict(
            {"words": ["A", "E", "I", "M"], "correct": False, "difficulty": 2}
        )
        assert attempt.difficulty is None
        assert attempt.timestamp == 0

    def test_history_from_none(self):
        assert history_from_dicts(None) == []


class TestTerminalPrefix:
    def test_cut_after_fourth_mistake(self):
        history = losing_history() + [hit(EASY, 0)]
        assert terminal_prefix(history) == losing_history()

    def test_cut_after_fourth_solve(self):
        history = winning_history() + [miss()]
        assert terminal_prefix(history) == winning_history()

    def test_non_terminal_kept(self):
        history = [hit(EASY, 0), miss()]
        assert terminal_prefix(history) == history


class TestPlayerProgress:
    def test_derived_counts(self):
        p = PlayerProgress("u1", "Alice", history=[hit(EASY, 0), miss(), miss()])
        assert p.score == 1
        assert p.mistakes == 2
        assert p.guess_count == 3
        assert not p.is_terminal()

    def test_win_is_terminal(self):
        assert PlayerProgress("u1", "Alice", history=winning_history()).is_terminal()

    def test_four_mistakes_is_terminal(self):
        assert PlayerProgress("u1", "Alice", history=losing_history()).is_terminal()

    def test_terminal_player_is_frozen(self):
        p = PlayerProgress("u1", "Alice")
        assert p.replace_history(winning_history())
        assert not p.replace_history([miss()])
        assert p.score == 4
        assert p.mistakes == 0

    def test_replace_truncates_past_terminal(self):
        p = PlayerProgress("u1", "Alice")
        p.replace_history(losing_history() + [hit(EASY, 0)])
        assert p.score == 0
        assert p.mistakes == 4

    def test_to_dict(self):
        p = PlayerProgress("u1", "Alice", "http://a/x.png", [hit(EASY, 0)])
        d = p.to_dict()
        assert d["userId"] == "u1"
        assert d["username"] == "Alice"
        assert d["avatarUrl"] == "http://a/x.png"
        assert d["score"] == 1
        assert d["mistakes"] == 0
        assert PlayerProgress.from_dict("u1", d) == p


class TestValidateHistory:
    def test_valid(self, puzzle):
        validate_history(puzzle, [hit(EASY, 0), miss(("E", "F", "I", "M")), hit(HARD, 2)])

    def test_unknown_word(self, puzzle):
        with pytest.raises(InvalidGuessError, match="not in puzzle"):
            validate_history(puzzle, [miss(("A", "B", "C", "Z"))])

    def test_false_claim_of_correct(self, puzzle):
        fake = GuessAttempt(words=("A", "E", "I", "M"), correct=True, difficulty=0)
        with pytest.raises(InvalidGuessError, match="marked correct=True"):
            validate_history(puzzle, [fake])

    def test_wrong_difficulty(self, puzzle):
        with pytest.raises(InvalidGuessError, match="difficulty"):
            validate_history(puzzle, [hit(EASY, 3)])

    def test_malformed(self, puzzle):
        with pytest.raises(InvalidGuessError, match="distinct"):
            validate_history(puzzle, [miss(("A", "A", "B", "C"))])

    def test_same_category_twice(self, puzzle):
        with pytest.raises(InvalidGuessError, match="repeats"):
            validate_history(puzzle, [hit(EASY, 0)] * 4)

    def test_reordered_category_repeat(self, puzzle):
        again = hit(("D", "C", "B", "A"), 0)
        with pytest.raises(InvalidGuessError, match="repeats"):
            validate_history(puzzle, [hit(EASY, 0), again])

    def test_repeated_miss(self, puzzle):
        with pytest.raises(InvalidGuessError, match="repeats"):
            validate_history(puzzle, [miss(), miss()])

    def test_words_from_solved_category(self, puzzle):
        with pytest.raises(InvalidGuessError, match="solved category"):
            validate_history(puzzle, [hit(EASY, 0), miss()])

    def test_full_log_of_mixed_outcomes(self, puzzle):
        history = [miss(("A", "B", "C", "E")), hit(EASY, 0), miss(("E", "F", "G", "I")), hit(MEDIUM, 1)]
        validate_history(puzzle, history)


class TestProgressLog:
    def test_solving_in_order(self, puzzle):
        log = ProgressLog(puzzle)
        for words in (EASY, MEDIUM, HARD, TRICKY):
            assert log.submit(list(words), now_ms=1).correct
        assert log.score == 4
        assert log.solved == [0, 1, 2, 3]
        assert log.is_terminal()
        assert log.remaining_words() == []

    def test_one_away_counts_as_mistake(self, puzzle):
        log = ProgressLog(puzzle)
        result = log.submit(["A", "B", "C", "E"], now_ms=1)
        assert result.one_away
        assert log.mistakes == 1
        assert log.history[0].correct is False

    def test_game_over_after_four_mistakes(self, puzzle):
        log = ProgressLog(puzzle)
        for attempt in losing_history():
            log.submit(list(attempt.words), now_ms=1)
        with pytest.raises(GameOverError):
            log.submit(list(EASY))

    def test_solved_words_rejected(self, puzzle):
        log = ProgressLog(puzzle)
        log.submit(list(EASY), now_ms=1)
        with pytest.raises(InvalidGuessError, match="solved or unknown"):
            log.submit(["A", "E", "F", "G"])

    def test_repeat_guess_rejected(self, puzzle):
        log = ProgressLog(puzzle)
        log.submit(["A", "E", "I", "M"], now_ms=1)
        with pytest.raises(InvalidGuessError, match="Already guessed"):
            log.submit(["M", "I", "E", "A"])
        assert log.mistakes == 1

    def test_wrong_size_rejected(self, puzzle):
        log = ProgressLog(puzzle)
        with pytest.raises(InvalidGuessError):
            log.submit(["A", "B", "C"])

    def test_history_validates_against_puzzle(self, puzzle):
        log = ProgressLog(puzzle)
        log.submit(["A", "B", "C", "E"], now_ms=1)
        log.submit(list(HARD), now_ms=2)
        validate_history(puzzle, log.history)

    def test_restore(self, puzzle):
        log = ProgressLog(puzzle)
        log.restore([hit(EASY, 0), miss()])
        assert log.solved == [0]
        assert log.mistakes == 1
        assert "A" not in log.remaining_words()
