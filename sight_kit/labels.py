from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Union


def _parse_names_mapping(lines: List[str]) -> Dict[int, str]:
    """
    Parse the `names:` block of a YOLO metadata.yaml:

        names:
          0: person
          1: bicycle
          ...
    """

    names: Dict[int, str] = {}
    in_names = False
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names or ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        if not left.isdigit():
            continue
        names[int(left)] = right.strip().strip("'").strip('"')
    return names


def load_labels(path: Union[str, Path]) -> List[str]:
    """
    Load class labels ordered by class id.

    Plain text files hold one label per line (blank lines skipped). `.yaml`/`.yml`
    files use the exported metadata `names:` mapping; gaps in the ids are
    filled with the id itself.
    """

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Labels file not found: {p}")

    lines = p.read_text(encoding="utf-8").splitlines()
    if p.suffix.lower() in {".yaml", ".yml"}:
        mapping = _parse_names_mapping(lines)
        labels = [mapping.get(i, str(i)) for i in range(max(mapping) + 1)] if mapping else []
    else:
        labels = [line.strip() for line in lines if line.strip()]

    if not labels:
        raise ValueError(f"No labels found in {p}")
    return labels
