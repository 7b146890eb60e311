"""Tests for hyperparameter grid search."""

import pytest

from loanml.backend.frame import Frame
from loanml.config.settings import SearchCriteriaConfig
from loanml.exceptions import InvalidParameterError, SchemaError
from loanml.modeling.grid import SearchCriteria, grid_search
from loanml.modeling.training import TrainingRequest

Splits = tuple[Frame, Frame, Frame]


@pytest.fixture
def request_gbm(splits: Splits, predictors: list[str]) -> TrainingRequest:
    """Base request for a small boosted model."""
    return TrainingRequest(
        y="bad_loan",
        training_frame=splits[0],
        algorithm="gbm",
        x=predictors,
        validation_frame=splits[1],
        params={"n_estimators": 10},
        seed=1,
    )


class TestSearchCriteria:
    """Tests for SearchCriteria."""

    def test_defaults(self) -> None:
        """Test unbounded Cartesian search by default."""
        criteria = SearchCriteria()
        assert criteria.strategy == "Cartesian"
        assert criteria.max_models is None

    def test_invalid_strategy(self) -> None:
        """Test that unknown strategies raise error."""
        with pytest.raises(InvalidParameterError, match="Unknown search strategy"):
            SearchCriteria(strategy="Bayesian")  # type: ignore[arg-type]

    def test_from_config(self) -> None:
        """Test conversion from the config section."""
        criteria = SearchCriteria.from_config(SearchCriteriaConfig(max_models=4, seed=9))
        assert criteria.strategy == "RandomDiscrete"
        assert criteria.max_models == 4
        assert criteria.seed == 9


class TestGridSearch:
    """Tests for grid_search()."""

    def test_cartesian(self, request_gbm: TrainingRequest) -> None:
        """Test that every combination is trained."""
        hyper_params = {"max_depth": [2, 3], "learning_rate": [0.05, 0.1]}
        grid = grid_search(request_gbm, hyper_params, grid_id="depth_grid")

        assert len(grid.models) == 4
        assert grid.failed_params == []
        assert [m.model_id for m in grid.models] == [f"depth_grid_model_{i}" for i in range(1, 5)]
        assert {tuple(sorted(p.items())) for p in grid.model_params.values()} == {
            (("learning_rate", lr), ("max_depth", d)) for lr in (0.05, 0.1) for d in (2, 3)
        }
        # fixed parameters apply to every model
        assert all(m.params["n_estimators"] == 10 for m in grid.models)

    def test_sorted_best_first(self, request_gbm: TrainingRequest) -> None:
        """Test that get_grid ranks by validation AUC, best first."""
        grid = grid_search(request_gbm, {"max_depth": [1, 2, 3]})
        ranked = grid.get_grid()
        aucs = [m.auc(valid=True) for m in ranked]
        assert aucs == sorted(aucs, reverse=True)
        assert grid.best_model is ranked[0]

        ascending = grid.get_grid(sort_by="logloss", decreasing=False)
        losses = [m.metrics(valid=True).logloss for m in ascending]
        assert losses == sorted(losses)

    def test_summary(self, request_gbm: TrainingRequest) -> None:
        """Test the summary table."""
        grid = grid_search(request_gbm, {"max_depth": [2, 3]})
        summary = grid.summary()
        assert list(summary.columns) == ["max_depth", "model_id", "auc"]
        assert len(summary) == 2

    def test_max_models(self, request_gbm: TrainingRequest) -> None:
        """Test the model budget."""
        criteria = SearchCriteria(max_models=2)
        grid = grid_search(request_gbm, {"max_depth": [1, 2, 3, 4]}, criteria)
        assert len(grid.models) == 2

    def test_random_discrete_is_seeded(self, request_gbm: TrainingRequest) -> None:
        """Test that a seeded random search samples the same combinations."""
        hyper_params = {"max_depth": [1, 2, 3], "learning_rate": [0.05, 0.1, 0.2]}
        criteria = SearchCriteria(strategy="RandomDiscrete", max_models=3, seed=5)

        first = grid_search(request_gbm, hyper_params, criteria)
        second = grid_search(request_gbm, hyper_params, criteria)

        assert len(first.models) == 3
        assert list(first.model_params.values()) == list(second.model_params.values())
        assert first.grid_id != second.grid_id

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_random_discrete_fills_budget_after_failure(self, request_gbm: TrainingRequest, seed: int) -> None:
        """Test that a failing sample is replaced by an untried combination."""
        criteria = SearchCriteria(strategy="RandomDiscrete", max_models=3, seed=seed)
        grid = grid_search(request_gbm, {"max_depth": [-1, 1, 2, 3]}, criteria)

        assert len(grid.models) == 3
        assert len(grid.failed_params) <= 1

    def test_plateau_stops_grid(self, request_gbm: TrainingRequest) -> None:
        """Test that the grid score keeper stops a search that no longer improves."""
        # identical combinations give identical scores
        criteria = SearchCriteria(stopping_rounds=1, stopping_tolerance=1e-3)
        grid = grid_search(request_gbm, {"max_depth": [2, 2, 2, 2]}, criteria)
        assert len(grid.models) == 2

    def test_no_grid_stopping(self, request_gbm: TrainingRequest) -> None:
        """Test that stopping_rounds=0 trains every combination."""
        criteria = SearchCriteria(stopping_rounds=0, stopping_tolerance=1e-3)
        grid = grid_search(request_gbm, {"max_depth": [2, 2, 2, 2]}, criteria)
        assert len(grid.models) == 4

    def test_failed_combinations_recorded(self, request_gbm: TrainingRequest) -> None:
        """Test that failing combinations are skipped."""
        grid = grid_search(request_gbm, {"max_depth": [-1, 2]})
        assert len(grid.models) == 1
        assert len(grid.failed_params) == 1
        assert grid.failed_params[0]["params"] == {"max_depth": -1}

    def test_empty_search_space(self, request_gbm: TrainingRequest) -> None:
        """Test that empty value lists raise error."""
        with pytest.raises(InvalidParameterError, match="at least one value"):
            grid_search(request_gbm, {"max_depth": []})

    def test_fixed_and_searched(self, request_gbm: TrainingRequest) -> None:
        """Test that a parameter cannot be both fixed and searched."""
        with pytest.raises(InvalidParameterError, match="both fixed and searched"):
            grid_search(request_gbm, {"n_estimators": [5, 10]})

    def test_missing_target(self, request_gbm: TrainingRequest) -> None:
        """Test that a missing response raises error."""
        request_gbm.y = "default_flag"
        with pytest.raises(SchemaError):
            grid_search(request_gbm, {"max_depth": [2]})
