from __future__ import annotations

import json
import pickle

from template import BaseExperiment, convert_color_value


def make_experiment(tmp_path):
    experiment = BaseExperiment(
        experiment_name="demo", data_fields=["a", "b"], output_directory=tmp_path
    )
    experiment.experiment_info.update(participant="P1", session="2")
    return experiment


def test_convert_color_value():
    assert convert_color_value([255, 0, 127.5]) == [1.0, -1.0, 0.0]


def test_csv_rows_are_written_once(tmp_path):
    experiment = make_experiment(tmp_path)

    filename = experiment.open_csv_data_file()
    experiment.update_experiment_data([{"a": 1, "b": 2, "c": 3}, {"a": 4}])
    experiment.save_data_to_csv()
    experiment.save_data_to_csv()

    assert filename == tmp_path / "demo_P1_2.csv"
    assert filename.read_text(encoding="utf-8").splitlines() == ["a,b", "1,2", "4,"]
    assert experiment.data_lines_written == 2
    assert experiment.pending_rows == []


def test_info_and_pickle(tmp_path):
    experiment = make_experiment(tmp_path)

    info_path = experiment.save_experiment_info()
    pickle_path = experiment.save_experiment_pickle()

    assert json.loads(info_path.read_text(encoding="utf-8"))["participant"] == "P1"
    with open(pickle_path, "rb") as handle:
        assert pickle.load(handle)["experiment_name"] == "demo"
