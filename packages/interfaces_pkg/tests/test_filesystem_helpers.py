from pathlib import Path

from fsspec.implementations.dirfs import DirFileSystem
from hostcap_interfaces.capping_definition import Contingency
from hostcap_interfaces.filesystem_helper import load_pydantic_model_fs, save_pydantic_model_fs


def test_save_load_pydantic_model_fs(tmp_path):
    fs = DirFileSystem(tmp_path)
    pydantic_model = Contingency(id="co1", elements=["line1", "line2"], name="double outage")

    file_path = "pydantic/test_pydantic_class.json"
    save_pydantic_model_fs(filesystem=fs, file_path=file_path, pydantic_model=pydantic_model)
    loaded_model = load_pydantic_model_fs(filesystem=fs, file_path=file_path, model_class=Contingency)
    assert loaded_model == pydantic_model

    # test Path
    file_path = Path("pydantic/test_pydantic_class.json")
    save_pydantic_model_fs(filesystem=fs, file_path=file_path, pydantic_model=pydantic_model)
    loaded_model = load_pydantic_model_fs(filesystem=fs, file_path=file_path, model_class=Contingency)
    assert loaded_model == pydantic_model
    assert (tmp_path / "pydantic" / "test_pydantic_class.json").exists()


def test_save_without_make_dir(tmp_path):
    fs = DirFileSystem(tmp_path)
    pydantic_model = Contingency(id="co1", elements=[])
    save_pydantic_model_fs(filesystem=fs, file_path="model.json", pydantic_model=pydantic_model, make_dir=False)
    assert load_pydantic_model_fs(filesystem=fs, file_path="model.json", model_class=Contingency).is_basecase()
