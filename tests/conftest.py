"""テスト共通設定: 各サービスのパッケージと helpers を import できるようにする。"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

for path in (
    ROOT / "services" / "catalog",
    ROOT / "services" / "shipping",
    ROOT / "services" / "audit",
    ROOT / "tests" / "helpers",
):
    sys.path.insert(0, str(path))
