"""
Large Movie Review Dataset (aclImdb) download and extraction
"""
import shutil
import tarfile
from pathlib import Path
from typing import Optional, Union

import requests
from tqdm import tqdm

from .utils import get_root

__all__ = [
    "_CITATION", "_DESCRIPTION", "_URL",
    "download_file", "download_and_extract"
]

# Metadata
_CITATION = """\
    @InProceedings{maas-EtAl:2011:ACL-HLT2011,
    author={Maas, Andrew L. and Daly, Raymond E. and Pham, Peter T. and
            Huang, Dan and Ng, Andrew Y. and Potts, Christopher},
    title={Learning Word Vectors for Sentiment Analysis},
    booktitle={Proceedings of the 49th Annual Meeting of the Association
               for Computational Linguistics: Human Language Technologies},
    pages={142--150},
    year={2011}
    }
"""

_DESCRIPTION = (
    "Large Movie Review Dataset: 25,000 highly polar movie reviews for "
    "training and 25,000 for testing, stored one review per file under "
    "train/{neg,pos} and test/{neg,pos}."
)

_URL = "https://ai.stanford.edu/~amaas/data/sentiment/"
_DATA_URL = "https://ai.stanford.edu/~amaas/data/sentiment/aclImdb_v1.tar.gz"

ARCHIVE_NAME = "aclImdb_v1.tar.gz"
DATASET_DIRNAME = "aclImdb"


def default_data_dir() -> Path:
    return get_root() / "data"


def download_file(url: str, target_path: Path) -> None:
    """
    Downloads a file given a url to a specific path
    """
    response = requests.get(url, stream=True, timeout=10)
    response.raise_for_status()
    total_size = int(response.headers.get('content-length', 0))

    with open(target_path, 'wb') as f, tqdm(
        desc=str(target_path),
        total=total_size,
        unit='B',
        unit_scale=True,
        unit_divisor=1024,
    ) as pbar:
        for data in response.iter_content(chunk_size=1024):
            f.write(data)
            pbar.update(len(data))


def download_and_extract(
    data_dir: Optional[Union[str, Path]] = None
) -> Path:
    """
    Downloads and extracts aclImdb into data_dir, skipping both steps when
    the train and test directories already exist. Returns the aclImdb path.
    """
    data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
    dataset_dir = data_dir / DATASET_DIRNAME
    if (dataset_dir / "train").is_dir() and (dataset_dir / "test").is_dir():
        print("aclImdb data already exist, skipping download")
        return dataset_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    archive_path = data_dir / ARCHIVE_NAME

    try:
        print("Downloading dataset...")
        download_file(_DATA_URL, archive_path)

        print("Extracting files...")
        with tarfile.open(archive_path, "r:gz") as tar:
            if hasattr(tarfile, "data_filter"):
                tar.extractall(data_dir, filter="data")
            else:
                tar.extractall(data_dir)
    except (requests.RequestException, OSError, EOFError, tarfile.TarError):
        archive_path.unlink(missing_ok=True)
        # a partial tree would make the next call skip the download
        shutil.rmtree(dataset_dir, ignore_errors=True)
        raise
    archive_path.unlink(missing_ok=True)
    print(f"Dataset extracted to {dataset_dir}")
    return dataset_dir


if __name__ == "__main__":
    download_and_extract()
