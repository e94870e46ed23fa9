import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict


class JsonDocument:
    """One JSON file loaded and saved as a whole."""

    def __init__(self, path, default: Dict[str, Any]):
        self.path = Path(path)
        self.default = default

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return copy.deepcopy(self.default)
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path}: expected a JSON object")
        return data

    def save(self, data: Dict[str, Any]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # write to a sibling temp file then swap, so readers never see half a file
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def ensure(self):
        if not self.path.exists():
            self.save(copy.deepcopy(self.default))
