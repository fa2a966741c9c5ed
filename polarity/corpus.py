"""
Discovers labeled documents stored one per file under a two-class
directory layout such as aclImdb/train/{neg,pos}
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import pandas as pd

from .errors import CorpusStructureError

DEFAULT_LABELS: Dict[str, int] = {"neg": 0, "pos": 1}


@dataclass(frozen=True)
class LabeledDocument:
    """
    A single document and its polarity label
    """
    id: int
    label: int
    raw_text: str


class CorpusLoader:
    """
    Reads every file of a corpus root that holds exactly two class
    subdirectories. Subdirectories are visited in lexicographic order and
    files inside them by filename, so the document order (and therefore
    every id) is reproducible.

    Args:
        root: Corpus root directory.
        label_map: Subdirectory name -> label.
        encoding: Text encoding of the documents.
        exclude: Subdirectory names to ignore (e.g. "unsup" in aclImdb).
    """

    def __init__(
        self,
        root: Union[str, Path],
        label_map: Optional[Mapping[str, int]] = None,
        encoding: str = "utf-8",
        exclude: Iterable[str] = ()
    ):
        self.root = Path(root)
        self.label_map = dict(label_map or DEFAULT_LABELS)
        self.encoding = encoding
        self.exclude = set(exclude)

    def class_dirs(self) -> List[Path]:
        """
        Returns the two class subdirectories in lexicographic order
        """
        if not self.root.is_dir():
            raise CorpusStructureError(f"{self.root} is not a directory")
        dirs = sorted(
            (p for p in self.root.iterdir()
             if p.is_dir()
             and not p.name.startswith(".")
             and p.name not in self.exclude),
            key=lambda p: p.name
        )
        if len(dirs) == 0 or len(dirs) > 2:
            raise CorpusStructureError(
                f"Expected two class subdirectories in {self.root}, "
                f"found {len(dirs)}: {[d.name for d in dirs]}"
            )
        for d in dirs:
            if d.name not in self.label_map:
                raise CorpusStructureError(
                    f"No label for subdirectory {d.name!r}; "
                    f"known labels are {sorted(self.label_map)}"
                )
        return dirs

    def _read(self, path: Path) -> str:
        # bytes are decoded directly so newlines are kept as stored
        try:
            return path.read_bytes().decode(self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise CorpusStructureError(f"Cannot read {path}: {e}") from e

    def load(self) -> List[LabeledDocument]:
        """
        Returns one LabeledDocument per file, negatives before positives
        """
        documents: List[LabeledDocument] = []
        for class_dir in self.class_dirs():
            label = self.label_map[class_dir.name]
            files = sorted(
                (p for p in class_dir.iterdir()
                 if not p.is_dir() and not p.name.startswith(".")),
                key=lambda p: p.name
            )
            for path in files:
                documents.append(
                    LabeledDocument(
                        id=len(documents),
                        label=label,
                        raw_text=self._read(path)
                    )
                )
        return documents

    def texts_and_labels(self) -> Tuple[List[str], List[int]]:
        """
        Returns the raw texts and their labels as two aligned lists
        """
        documents = self.load()
        return (
            [doc.raw_text for doc in documents],
            [doc.label for doc in documents]
        )


def documents_to_frame(documents: List[LabeledDocument]) -> pd.DataFrame:
    """
    Wraps documents in a DataFrame with columns id, label and text
    """
    return pd.DataFrame(
        {
            "id": [doc.id for doc in documents],
            "label": [doc.label for doc in documents],
            "text": [doc.raw_text for doc in documents],
        },
        columns=["id", "label", "text"]
    )
