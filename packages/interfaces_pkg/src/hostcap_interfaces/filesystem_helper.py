"""Support functions for the AbstractFileSystem"""

from pathlib import Path
from typing import TypeVar

from beartype.typing import Union
from fsspec import AbstractFileSystem
from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


def save_pydantic_model_fs(
    filesystem: AbstractFileSystem,
    file_path: Union[str, Path],
    pydantic_model: BaseModel,
    indent: int = 2,
    make_dir: bool = True,
) -> None:
    """Save a pydantic model to a json file

    Parameters
    ----------
    filesystem : AbstractFileSystem
        The file system to use to save the model.
    file_path : Union[str, Path]
        The path to the json file, relative to the filesystem.
    pydantic_model : BaseModel
        The model to save, e.g. a CappingInputData or CappingResults
    indent: int
        The indent for the model dump
    make_dir: bool
        Whether to create the directory if it does not exist.
    """
    if make_dir:
        filesystem.makedirs(Path(file_path).parent.as_posix(), exist_ok=True)
    with filesystem.open(str(file_path), "w") as f:
        f.write(pydantic_model.model_dump_json(indent=indent))


def load_pydantic_model_fs(filesystem: AbstractFileSystem, file_path: Union[str, Path], model_class: type[T]) -> T:
    """Load a pydantic model from a json file

    Parameters
    ----------
    filesystem : AbstractFileSystem
        The file system to use to load the model.
    file_path : Union[str, Path]
        The path to the json file to load the model from.
    model_class : type[T]
        The pydantic model class to load.

    Returns
    -------
    T
        The loaded pydantic model instance.
    """
    with filesystem.open(str(file_path), "r") as f:
        data = f.read()
    return model_class.model_validate_json(data)
