from __future__ import annotations

from .ndjson import NDJSONDecoder, iter_records
from .serving_client import ProgressCallback, ServedModel, ServingClient

__all__ = ["ServingClient", "ServedModel", "ProgressCallback", "NDJSONDecoder", "iter_records"]
