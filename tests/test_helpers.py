import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

HERE = Path(__file__).resolve()
ROOT = HERE.parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from thermstats.helpers import (
    SHDI,
    SIDI,
    SUMMARY_STATS,
    kurtosis,
    multi_sapply,
    perc_5,
    perc_95,
    resolve_stat,
    round_to,
    skewness,
)


def test_percentiles_interpolate_linearly():
    x = np.arange(1, 101, dtype=float)
    assert perc_5(x) == pytest.approx(5.95)
    assert perc_95(x) == pytest.approx(95.05)


def test_percentiles_accept_matrices_and_drop_nan():
    m = np.array([[1.0, 2.0], [np.nan, 3.0]])
    assert perc_95(m) == pytest.approx(np.percentile([1.0, 2.0, 3.0], 95))
    assert np.isnan(perc_95(m, na_rm=False))


def test_shdi_equal_proportions_is_log_of_classes():
    x = [1, 1, 2, 2, 3, 3, 4, 4]
    assert SHDI(x) == pytest.approx(np.log(4))


def test_shdi_single_value_is_zero():
    assert SHDI([5.0, 5.0, 5.0]) == pytest.approx(0.0)


def test_sidi_two_equal_classes():
    assert SIDI([0, 0, 1, 1]) == pytest.approx(0.5)


def test_skewness_symmetric_is_zero_and_right_tail_positive():
    assert skewness([1.0, 2.0, 3.0, 4.0, 5.0]) == pytest.approx(0.0)
    assert skewness([1.0, 1.0, 1.0, 1.0, 10.0]) > 0


def test_skewness_matches_moment_definition():
    x = np.array([2.0, 3.0, 5.0, 9.0, 15.0])
    d = x - x.mean()
    expected = np.mean(d ** 3) / np.mean(d ** 2) ** 1.5
    assert skewness(x) == pytest.approx(expected)


def test_kurtosis_is_pearson_not_excess():
    x = np.array([-1.0, 1.0, -1.0, 1.0])
    # Two-point symmetric distribution: m4 / m2^2 == 1
    assert kurtosis(x) == pytest.approx(1.0)


def test_all_nan_gives_nan():
    for name, fn in SUMMARY_STATS.items():
        if name == "n":
            continue
        assert np.isnan(fn([np.nan, np.nan])), name


def test_empty_input_counts_zero():
    out = multi_sapply(np.full((2, 3), np.nan), ["n", "mean"])
    assert out.iloc[0]["n"] == 0
    assert np.isnan(out.iloc[0]["mean"])


def test_sd_uses_sample_denominator():
    assert SUMMARY_STATS["sd"]([1.0, 2.0, 3.0, 4.0]) == pytest.approx(np.std([1, 2, 3, 4], ddof=1))
    assert np.isnan(SUMMARY_STATS["sd"]([1.0]))


def test_multi_sapply_returns_one_row_in_order():
    out = multi_sapply(np.array([[1.0, 2.0], [3.0, np.nan]]), ["mean", "min", "max", "n"])
    assert isinstance(out, pd.DataFrame)
    assert list(out.columns) == ["mean", "min", "max", "n"]
    assert len(out) == 1
    row = out.iloc[0]
    assert row["mean"] == pytest.approx(2.0)
    assert row["min"] == 1.0
    assert row["max"] == 3.0
    assert row["n"] == 3


def test_multi_sapply_custom_names_and_callables():
    out = multi_sapply([1.0, 2.0, 3.0], ["mean", np.ptp], names=["avg", "range"])
    assert list(out.columns) == ["avg", "range"]
    assert out.iloc[0]["range"] == pytest.approx(2.0)


def test_multi_sapply_name_length_mismatch():
    with pytest.raises(ValueError, match="names"):
        multi_sapply([1.0], ["mean", "max"], names=["only_one"])


def test_multi_sapply_without_na_rm_propagates_nan():
    out = multi_sapply([1.0, np.nan], ["mean"], na_rm=False)
    assert np.isnan(out.iloc[0]["mean"])


def test_unknown_stat_name():
    with pytest.raises(ValueError, match="Unknown statistic"):
        resolve_stat("not_a_stat")


def test_round_to_nearest_multiple():
    out = round_to([0.24, 0.26, 1.1], 0.5)
    np.testing.assert_allclose(out, [0.0, 0.5, 1.0])
    np.testing.assert_allclose(round_to([1.234], None), [1.234])


def test_round_to_rejects_non_positive():
    with pytest.raises(ValueError):
        round_to([1.0], 0)
