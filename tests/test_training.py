"""Tests for single-family model training."""

import dataclasses

import numpy as np
import pytest

from loanml.backend.frame import Frame
from loanml.backend.session import Session
from loanml.exceptions import EvaluationError, InvalidParameterError, SchemaError, SessionClosedError
from loanml.modeling.columns import detect_task, select_columns
from loanml.modeling.early_stopping import EarlyStopping
from loanml.modeling.estimators import get_defaults, get_estimator, list_algorithms, supports_early_stopping
from loanml.modeling.training import Model, TrainingRequest, train

Splits = tuple[Frame, Frame, Frame]


def _request(splits: Splits, predictors: list[str], algorithm: str, **kwargs: object) -> TrainingRequest:
    train_frame, valid_frame, _ = splits
    return TrainingRequest(
        y="bad_loan",
        training_frame=train_frame,
        algorithm=algorithm,
        x=predictors,
        validation_frame=valid_frame,
        seed=1,
        **kwargs,  # type: ignore[arg-type]
    )


class TestColumns:
    """Tests for predictor selection and task detection."""

    def test_select_columns(self, splits: Splits) -> None:
        """Test that the target and exclusions are removed."""
        x, y = select_columns(splits[0], "bad_loan", ["int_rate"])
        assert y == "bad_loan"
        assert len(x) == 13
        assert "bad_loan" not in x
        assert "int_rate" not in x

    def test_unknown_exclusion_ignored(self, splits: Splits) -> None:
        """Test that excluding absent columns is not an error."""
        x, _ = select_columns(splits[0], "bad_loan", ["int_rate", "not_a_column"])
        assert len(x) == 13

    def test_missing_target(self, splits: Splits) -> None:
        """Test that a missing target raises error."""
        with pytest.raises(SchemaError, match="not found"):
            select_columns(splits[0], "default_flag")

    def test_detect_task(self, splits: Splits) -> None:
        """Test task detection from column types."""
        train_frame = splits[0]
        assert detect_task(train_frame, "bad_loan") == "binomial"
        assert detect_task(train_frame, "purpose") == "multinomial"
        assert detect_task(train_frame, "dti") == "regression"


class TestEstimators:
    """Tests for the estimator registry."""

    def test_families(self) -> None:
        """Test the trainable families."""
        assert list_algorithms() == ["glm", "drf", "gbm", "deeplearning", "xgboost"]

    def test_early_stopping_support(self) -> None:
        """Test which families grow iteratively."""
        assert supports_early_stopping("gbm")
        assert supports_early_stopping("xgboost")
        assert not supports_early_stopping("glm")

    def test_defaults(self) -> None:
        """Test default hyperparameters."""
        assert get_defaults("gbm", "binomial")["n_estimators"] == 50

    def test_seed_and_jobs_applied(self) -> None:
        """Test that seed and parallelism reach the estimator."""
        estimator = get_estimator("drf", "binomial", seed=3, n_jobs=2)
        assert estimator.get_params()["random_state"] == 3
        assert estimator.get_params()["n_jobs"] == 2

    def test_unknown_algorithm(self) -> None:
        """Test that unknown families raise error."""
        with pytest.raises(InvalidParameterError, match="Unknown algorithm"):
            get_estimator("svm", "binomial")

    def test_unknown_hyperparameter(self) -> None:
        """Test that unknown hyperparameters raise error."""
        with pytest.raises(InvalidParameterError, match="Unknown hyperparameters"):
            get_estimator("gbm", "binomial", {"ntrees": 10})


class TestTrain:
    """Tests for train()."""

    @pytest.mark.parametrize("algorithm", ["glm", "drf", "gbm", "deeplearning", "xgboost"])
    def test_every_family(self, splits: Splits, predictors: list[str], algorithm: str) -> None:
        """Test that every family trains and scores on the test frame."""
        model = train(_request(splits, predictors, algorithm))

        assert model.algorithm == algorithm
        assert model.task == "binomial"
        assert model.domain == ["0", "1"]
        assert model.model_id == f"{algorithm}_1"
        assert 0.0 <= model.auc() <= 1.0
        assert 0.0 <= model.auc(valid=True) <= 1.0

        performance = model.model_performance(splits[2])
        assert 0.0 <= performance.auc() <= 1.0
        assert performance.n_samples == splits[2].nrows

    def test_predict(self, splits: Splits, predictors: list[str]) -> None:
        """Test prediction columns."""
        model = train(_request(splits, predictors, "gbm"))
        predictions = model.predict(splits[2])

        assert list(predictions.columns) == ["predict", "0", "1"]
        assert len(predictions) == splits[2].nrows
        np.testing.assert_allclose(predictions[["0", "1"]].sum(axis=1), 1.0)
        assert set(predictions["predict"]) <= {"0", "1"}

    def test_registered_in_session(self, splits: Splits, predictors: list[str]) -> None:
        """Test that models are registered under their id."""
        model = train(_request(splits, predictors, "glm", model_id="my_glm"))
        session = splits[0].session
        assert session.models() == ["my_glm"]
        assert session.get_model("my_glm") is model

    def test_model_is_immutable(self, splits: Splits, predictors: list[str]) -> None:
        """Test that model handles cannot be modified."""
        model = train(_request(splits, predictors, "glm"))
        with pytest.raises(dataclasses.FrozenInstanceError):
            model.model_id = "other"  # type: ignore[misc]

    def test_params_recorded(self, splits: Splits, predictors: list[str]) -> None:
        """Test that defaults merged with overrides are recorded."""
        model = train(_request(splits, predictors, "gbm", params={"n_estimators": 7}))
        assert model.params["n_estimators"] == 7
        assert model.params["learning_rate"] == 0.1

    def test_all_columns_when_x_omitted(self, splits: Splits) -> None:
        """Test that every non-target column is a predictor by default."""
        model = train(
            TrainingRequest(y="bad_loan", training_frame=splits[0], algorithm="glm", seed=1)
        )
        assert len(model.x) == 14
        assert "int_rate" in model.x

    def test_missing_targets_dropped(self, session: Session, splits: Splits, predictors: list[str]) -> None:
        """Test that rows with a missing target are not used."""
        df = splits[0].as_data_frame()
        df.loc[:9, "bad_loan"] = np.nan
        frame = session.upload_frame(df, frame_id="train_gaps", types=splits[0].types)

        model = train(
            TrainingRequest(y="bad_loan", training_frame=frame, algorithm="glm", x=predictors)
        )
        assert model.training_metrics is not None
        assert model.training_metrics.n_samples == frame.nrows - 10

    def test_multinomial(self, splits: Splits) -> None:
        """Test a categorical target with more than two levels."""
        model = train(
            TrainingRequest(
                y="purpose",
                training_frame=splits[0],
                algorithm="xgboost",
                x=["loan_amnt", "annual_inc", "dti", "term"],
                seed=1,
            )
        )
        assert model.task == "multinomial"
        predictions = model.predict(splits[2])
        assert list(predictions.columns) == ["predict", *splits[0].levels("purpose")]
        with pytest.raises(EvaluationError):
            model.auc()

    def test_regression(self, splits: Splits) -> None:
        """Test a numeric target."""
        model = train(
            TrainingRequest(
                y="dti",
                training_frame=splits[0],
                algorithm="gbm",
                x=["loan_amnt", "annual_inc", "revol_util", "term"],
                seed=1,
            )
        )
        assert model.task == "regression"
        assert model.domain is None
        assert list(model.predict(splits[2]).columns) == ["predict"]
        assert model.model_performance(splits[2]).rmse > 0


class TestTrainErrors:
    """Tests for rejected training requests."""

    def test_missing_target(self, splits: Splits, predictors: list[str]) -> None:
        """Test that a missing response raises error."""
        request = _request(splits, predictors, "glm")
        request.y = "default_flag"
        with pytest.raises(SchemaError, match="not found"):
            train(request)

    def test_target_in_predictors(self, splits: Splits, predictors: list[str]) -> None:
        """Test that the response may not be a predictor."""
        with pytest.raises(SchemaError, match="also listed as a predictor"):
            train(_request(splits, [*predictors, "bad_loan"], "glm"))

    def test_missing_predictor(self, splits: Splits, predictors: list[str]) -> None:
        """Test that unknown predictors raise error."""
        with pytest.raises(SchemaError, match="Predictors not found"):
            train(_request(splits, [*predictors, "fico"], "glm"))

    def test_text_target(self, splits: Splits) -> None:
        """Test that a text response raises error."""
        splits[0].ascharacter("purpose")
        with pytest.raises(SchemaError, match="is text"):
            train(TrainingRequest(y="purpose", training_frame=splits[0], algorithm="glm", x=["dti"]))

    def test_single_level_target(self, session: Session) -> None:
        """Test that a constant categorical response raises error."""
        import pandas as pd

        frame = session.upload_frame(pd.DataFrame({"y": ["a"] * 5, "v": [1.0, 2.0, 3.0, 4.0, 5.0]}))
        with pytest.raises(SchemaError, match="at least 2"):
            train(TrainingRequest(y="y", training_frame=frame, algorithm="glm"))

    def test_validation_type_mismatch(self, splits: Splits, predictors: list[str]) -> None:
        """Test that training and validation column types must agree."""
        splits[1].asnumeric("bad_loan")
        with pytest.raises(SchemaError, match="validation frame"):
            train(_request(splits, predictors, "glm"))

    def test_unknown_hyperparameter(self, splits: Splits, predictors: list[str]) -> None:
        """Test that unknown hyperparameters raise error."""
        with pytest.raises(InvalidParameterError):
            train(_request(splits, predictors, "gbm", params={"ntrees": 10}))

    def test_invalid_hyperparameter_value(self, splits: Splits, predictors: list[str]) -> None:
        """Test that invalid values surface as InvalidParameterError."""
        with pytest.raises(InvalidParameterError, match="training failed"):
            train(_request(splits, predictors, "gbm", params={"max_depth": -1}))

    def test_single_fold(self, splits: Splits, predictors: list[str]) -> None:
        """Test that nfolds=1 raises error."""
        with pytest.raises(InvalidParameterError, match="nfolds"):
            train(_request(splits, predictors, "glm", nfolds=1))

    def test_closed_session(self, splits: Splits, predictors: list[str]) -> None:
        """Test that training in a closed session raises error."""
        splits[0].session.shutdown()
        with pytest.raises(SessionClosedError):
            train(_request(splits, predictors, "glm"))


class TestEarlyStopping:
    """Tests for iterative growth under an early-stopping policy."""

    def test_stops_when_no_progress(self, splits: Splits, predictors: list[str]) -> None:
        """Test that an unreachable tolerance stops after 2 scoring events."""
        policy = EarlyStopping(
            max_iterations=50, score_interval=5, metric="logloss", tolerance=1.0, rounds=1
        )
        model = train(_request(splits, predictors, "gbm", early_stopping=policy))

        assert model.actual_iterations == 10
        assert len(model.scoring_history) == 2
        assert model.params["n_estimators"] == 10
        assert model.estimator.named_steps["model"].n_estimators == 10
        assert "validation_logloss" in model.scoring_history[-1]

    @pytest.mark.parametrize("algorithm", ["drf", "gbm", "deeplearning", "xgboost"])
    def test_runs_to_max_iterations(self, splits: Splits, predictors: list[str], algorithm: str) -> None:
        """Test that rounds=0 grows to the iteration cap."""
        policy = EarlyStopping(max_iterations=12, score_interval=5, metric="auc", rounds=0)
        model = train(_request(splits, predictors, algorithm, early_stopping=policy))

        assert model.actual_iterations == 12
        assert [e["iterations"] for e in model.scoring_history] == [5.0, 10.0, 12.0]
        assert 0.0 <= model.model_performance(splits[2]).auc() <= 1.0

    def test_glm_maps_to_iteration_cap(self, splits: Splits, predictors: list[str]) -> None:
        """Test that GLM takes the policy's cap as solver iterations."""
        policy = EarlyStopping(max_iterations=77)
        model = train(_request(splits, predictors, "glm", params={}, early_stopping=policy))
        assert model.params["max_iter"] == 77
        assert model.actual_iterations is None
        assert model.scoring_history == []


class TestModelHandle:
    """Tests for model handle behavior."""

    def test_cross_validation(self, splits: Splits, predictors: list[str]) -> None:
        """Test that k-fold metrics are attached and used for ranking."""
        model = train(_request(splits, predictors, "gbm", nfolds=3))

        assert len(model.cross_validation_metrics) == 3
        assert 0.0 <= model.auc(xval=True) <= 1.0
        assert model.ranking_metrics.auc() == pytest.approx(model.auc(xval=True))

    def test_metric_sources(self, splits: Splits, predictors: list[str]) -> None:
        """Test stored metric lookup by source."""
        model = train(_request(splits, predictors, "glm"))

        assert model.metrics() is model.training_metrics
        assert model.metrics(valid=True) is model.validation_metrics
        assert model.ranking_metrics is model.validation_metrics
        with pytest.raises(InvalidParameterError, match="at most one"):
            model.metrics(train=True, valid=True)
        with pytest.raises(EvaluationError, match="without cross-validation"):
            model.metrics(xval=True)

    def test_no_validation_frame(self, splits: Splits, predictors: list[str]) -> None:
        """Test metrics of a model trained without validation frame."""
        model = train(
            TrainingRequest(y="bad_loan", training_frame=splits[0], algorithm="glm", x=predictors)
        )
        with pytest.raises(EvaluationError, match="without a validation frame"):
            model.auc(valid=True)
        assert model.ranking_metrics is model.training_metrics

    def test_unseen_predictor_level(self, session: Session, splits: Splits, predictors: list[str]) -> None:
        """Test that unseen categorical levels are scored."""
        model = train(_request(splits, predictors, "glm"))
        df = splits[2].as_data_frame()
        df.loc[0, "addr_state"] = "ZZ"
        frame = session.upload_frame(df, types=splits[2].types)
        assert len(model.predict(frame)) == frame.nrows

    def test_unseen_target_level(self, session: Session, splits: Splits, predictors: list[str]) -> None:
        """Test that scoring a frame with unknown target levels raises error."""
        model = train(_request(splits, predictors, "glm"))
        df = splits[2].as_data_frame()
        df.loc[0, "bad_loan"] = "2"
        frame = session.upload_frame(df, types=splits[2].types)
        with pytest.raises(SchemaError, match="not in the training domain"):
            model.model_performance(frame)

    def test_missing_predictor_at_scoring(self, session: Session, splits: Splits, predictors: list[str]) -> None:
        """Test that scoring requires every predictor."""
        model = train(_request(splits, predictors, "glm"))
        frame = session.upload_frame(splits[2].as_data_frame().drop(columns=["dti"]))
        with pytest.raises(SchemaError, match="missing predictors"):
            model.predict(frame)

    def test_removed_model(self, splits: Splits, predictors: list[str]) -> None:
        """Test that a removed model handle fails."""
        model = train(_request(splits, predictors, "glm"))
        splits[0].session.remove(model.model_id)
        with pytest.raises(SessionClosedError, match="was removed"):
            model.predict(splits[2])

    def test_replaced_model(self, splits: Splits, predictors: list[str]) -> None:
        """Test that a model handle fails once another model takes its key."""
        first = train(_request(splits, predictors, "glm", model_id="loan_glm"))
        second = train(_request(splits, predictors, "glm", model_id="loan_glm"))
        with pytest.raises(SessionClosedError, match="replaced"):
            first.predict(splits[2])
        assert len(second.predict(splits[2])) == splits[2].nrows

    def test_after_shutdown(self, splits: Splits, predictors: list[str]) -> None:
        """Test that a model handle fails after shutdown."""
        model: Model = train(_request(splits, predictors, "glm"))
        splits[0].session.shutdown()
        with pytest.raises(SessionClosedError):
            model.predict(splits[2])

    def test_summary(self, splits: Splits, predictors: list[str]) -> None:
        """Test the flat model summary."""
        model = train(_request(splits, predictors, "gbm"))
        summary = model.summary()
        assert summary["model_id"] == "gbm_1"
        assert summary["n_predictors"] == len(predictors)
        assert summary["nfolds"] == 0
