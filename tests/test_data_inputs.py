import numpy as np
import pandas as pd
import pytest

from grouped_fitting import (
    ConfigurationError,
    CurveSignatureError,
    IncompleteParameterCoverageError,
    ObservationGroup,
    get_curve,
    groups_from_frame,
)
from grouped_fitting.data import as_groups
from grouped_fitting.inputs import bounds_for_free, initial_vector, merge_specs, parameter_spec


def _frame() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "plot": [1, 1, 1, 2, 2, 2],
            "trt": ["a", "a", "a", "b", "b", "b"],
            "rep": [1, 1, 1, 1, 1, 1],
            "time": [0.0, 10.0, 20.0, 0.0, 10.0, 20.0],
            "cover": [0.0, 5.0, np.nan, 1.0, 6.0, 11.0],
        }
    )


def test_groups_from_frame_single_column():
    groups = groups_from_frame(_frame(), x="time", y="cover", grp="plot", keep="trt")
    assert [g.uid for g in groups] == [1, 2]
    # Missing y is dropped.
    assert groups[0].n == 2
    assert groups[1].n == 3
    assert dict(groups[1].metadata) == {"plot": 2, "trt": "b"}


def test_groups_from_frame_combined_columns_and_no_grouping():
    groups = groups_from_frame(_frame(), x="time", y="cover", grp=["trt", "rep"])
    assert [g.uid for g in groups] == [1, 2]
    assert groups[0].metadata["trt"] == "a"

    single = groups_from_frame(_frame(), x="time", y="cover")
    assert len(single) == 1
    assert single[0].uid == 1
    assert single[0].n == 5


def test_groups_from_frame_rejects_bad_columns():
    with pytest.raises(ConfigurationError, match="not found"):
        groups_from_frame(_frame(), x="day", y="cover")
    with pytest.raises(ConfigurationError, match="numeric"):
        groups_from_frame(_frame(), x="trt", y="cover")


def test_observation_group_validation():
    with pytest.raises(ConfigurationError, match="3 values"):
        ObservationGroup(uid=1, x=[1.0, 2.0, 3.0], y=[1.0, 2.0])
    with pytest.raises(ConfigurationError, match="missing"):
        ObservationGroup(uid=1, x=[1.0, 2.0], y=[1.0, np.nan])

    g = ObservationGroup.from_arrays("a", [1.0, 2.0, 3.0], [1.0, np.nan, 3.0])
    assert g.n == 2
    assert g.domain == (1.0, 3.0)
    with pytest.raises(ValueError):
        g.x[0] = 10.0


def test_as_groups_accepts_pairs_and_rejects_duplicates():
    groups = as_groups({"a": ([0.0, 1.0], [0.0, 1.0]), "b": ([0.0, 1.0], [1.0, 2.0])})
    assert [g.uid for g in groups] == ["a", "b"]

    g = ObservationGroup(uid=1, x=[0.0], y=[0.0])
    with pytest.raises(ConfigurationError, match="Duplicate"):
        as_groups([g, g])


def test_parameter_spec_forms():
    glob = parameter_spec({"t1": 40, "k": 100}, label="init")
    assert not glob.is_per_group
    assert glob.for_group("anything") == {"t1": 40.0, "k": 100.0}

    per = parameter_spec({1: {"t1": 40}, 2: {"t1": 42}}, label="init")
    assert per.is_per_group
    assert per.for_group(2) == {"t1": 42.0}
    assert per.missing([1, 2, 3]) == [3]
    with pytest.raises(IncompleteParameterCoverageError) as info:
        per.check_coverage([1, 2, 3])
    assert info.value.missing == (3,)

    table = pd.DataFrame({"uid": [1, 2], "t1": [40.0, np.nan], "k": [100.0, 90.0]})
    spec = parameter_spec(table, label="init")
    assert spec.for_group(2) == {"k": 90.0}

    with pytest.raises(ConfigurationError, match="mixes"):
        parameter_spec({"t1": 1.0, 2: {"t1": 1.0}}, label="init")
    with pytest.raises(ConfigurationError, match="numeric"):
        parameter_spec({"t1": "x"}, label="init")


def test_merge_specs_layers_group_values_over_globals():
    base = parameter_spec({"t1": 40.0, "t2": 70.0}, label="parameters")
    over = parameter_spec({1: {"t1": 35.0}}, label="initial_vals")
    merged = merge_specs(base, over, [1, 2])
    assert merged.for_group(1) == {"t1": 35.0, "t2": 70.0}
    assert merged.for_group(2) == {"t1": 40.0, "t2": 70.0}


def test_initial_vector_uses_defaults_and_checks_names():
    curve = get_curve("linear_plateau")
    p0 = initial_vector(curve, ("t1", "k"), {"t1": 40.0, "t2": 99.0})
    np.testing.assert_allclose(p0, [40.0, 0.9])

    with pytest.raises(CurveSignatureError, match="unknown"):
        initial_vector(curve, ("t1", "t2", "k"), {"slope": 1.0})
    with pytest.raises(ConfigurationError, match="missing"):
        initial_vector(get_curve("linear"), ("m", "b"), {"m": 1.0})
    with pytest.raises(ConfigurationError, match="2 entries"):
        initial_vector(curve, ("t1", "t2", "k"), [1.0, 2.0])


def test_bounds_for_free_forms():
    curve = get_curve("linear_plateau")
    lo, hi = bounds_for_free(curve, ("t1", "t2", "k"), 0.0, {"k": 150.0})
    np.testing.assert_allclose(lo, [0.0, 0.0, 0.0])
    assert np.isinf(hi[0]) and hi[2] == 150.0

    with pytest.raises(ConfigurationError, match="exceeds"):
        bounds_for_free(curve, ("t1", "t2", "k"), [0.0, 0.0, 10.0], [1.0, 1.0, 5.0])
    with pytest.raises(ConfigurationError, match="numeric"):
        bounds_for_free(curve, ("t1", "t2", "k"), "low", None)
