from __future__ import annotations

from typing import Literal

ModelSource = Literal["serving-origin", "trained", "restored"]
Direction = Literal["upload", "download", "both"]
TransportName = Literal["inprocess", "subprocess"]
