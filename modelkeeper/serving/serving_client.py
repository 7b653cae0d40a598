# serving/serving_client.py
"""
Typed client for a model-serving HTTP endpoint speaking the Ollama API.

Routes used: ``GET /api/tags``, ``POST /api/pull`` (NDJSON stream),
``POST /api/show``, ``POST /api/generate`` (streamed or not), ``DELETE /api/delete``.

The client keeps no state besides its settings and the local model directory,
never touches the manifest and never logs: failures are raised to the caller.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import requests

from modelkeeper.constants.tool_configs import ServingSettings
from modelkeeper.constants.tool_constants import (
    ROUTE_DELETE,
    ROUTE_GENERATE,
    ROUTE_LIST,
    ROUTE_PULL,
    ROUTE_SHOW,
    sanitize_model_name,
)
from modelkeeper.core.errors import (
    EndpointConnectionError,
    EndpointStatusError,
    NotFoundError,
    ProtocolError,
    TransferError,
)

from .ndjson import iter_records

ProgressCallback = Callable[[dict[str, Any]], None]


@dataclass(frozen=True)
class ServedModel:
    """One row of the endpoint's model listing."""

    name: str
    size: int = 0
    modified_at: Optional[str] = None
    digest: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _is_success(resp: requests.Response) -> bool:
    return 200 <= int(resp.status_code) < 300


def _detail(resp: requests.Response) -> str:
    """Best-effort error text from a failed response."""
    try:
        body = resp.json()
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
    except ValueError:
        pass
    text = (getattr(resp, "text", "") or "").strip()
    return text[:200]


class ServingClient:
    """
    HTTP access to the serving endpoint.

    Parameters
    ----------
    settings : ServingSettings, optional
        Base URL and timeouts. Defaults are read from the environment once, here.
    model_dir : Path, optional
        Local directory holding one artifact directory per model; used only by
        :meth:`model_exists`.
    session : requests.Session, optional
        Injected session (tests, custom adapters, proxies).
    """

    def __init__(
        self,
        settings: Optional[ServingSettings] = None,
        model_dir: Optional[Path] = None,
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.settings = settings or ServingSettings()
        self.host = self.settings.host.rstrip("/")
        self.model_dir = Path(model_dir) if model_dir is not None else None
        self._session = session or requests.Session()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        route: str,
        *,
        payload: Optional[dict[str, Any]] = None,
        stream: bool = False,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        url = f"{self.host}{route}"
        try:
            return self._session.request(
                method,
                url,
                json=payload,
                stream=stream,
                timeout=timeout if timeout is not None else self.settings.timeout,
            )
        except requests.RequestException as e:
            raise EndpointConnectionError(f"Serving endpoint {self.host} is unreachable: {e}") from e

    @staticmethod
    def _json_object(resp: requests.Response, what: str) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise ProtocolError(f"Failed to parse {what} response: {e}") from e
        if not isinstance(data, dict):
            raise ProtocolError(f"Failed to parse {what} response: expected a JSON object")
        return data

    @staticmethod
    def _model_payload(name: str, **extra: Any) -> dict[str, Any]:
        # older servers read "name", newer ones "model"
        return {"model": name, "name": name, **extra}

    def _check_unary(self, resp: requests.Response, what: str, model: Optional[str] = None) -> None:
        if _is_success(resp):
            return
        if resp.status_code == 404 and model is not None:
            raise NotFoundError(f"Model '{model}' not found on {self.host} ({what}): {_detail(resp)}")
        raise EndpointStatusError(
            f"{what} failed: HTTP {resp.status_code} {_detail(resp)}".rstrip(), status_code=resp.status_code
        )

    def _consume_stream(
        self,
        resp: requests.Response,
        what: str,
        on_record: Optional[ProgressCallback],
        stop_on_done: bool,
    ) -> Optional[dict[str, Any]]:
        """
        Forward each decoded record to `on_record`; return the terminal record if
        `stop_on_done` and one arrives, else None once the stream ends.
        """
        try:
            if not _is_success(resp):
                raise TransferError(
                    f"{what} failed: HTTP {resp.status_code} {_detail(resp)}".rstrip(), status_code=resp.status_code
                )
            for record in iter_records(resp.iter_content(chunk_size=None)):
                if record.get("error"):
                    raise TransferError(f"{what} failed: {record['error']}", status_code=resp.status_code)
                if on_record is not None:
                    on_record(record)
                if stop_on_done and record.get("done"):
                    return record
        except requests.RequestException as e:
            raise TransferError(f"{what} interrupted: {e}") from e
        finally:
            resp.close()
        return None

    # ------------------------------------------------------------------
    # Model inventory
    # ------------------------------------------------------------------

    def list_models(self) -> list[ServedModel]:
        """Return the models hosted by the endpoint, in the endpoint's order."""
        resp = self._request("GET", ROUTE_LIST)
        self._check_unary(resp, "List models")
        data = self._json_object(resp, "model list")
        models = data.get("models")
        if not isinstance(models, list):
            raise ProtocolError("Failed to parse model list response: missing 'models' array")

        out: list[ServedModel] = []
        for item in models:
            if not isinstance(item, dict) or not item.get("name"):
                raise ProtocolError(f"Malformed model record in list response: {item!r}")
            out.append(
                ServedModel(
                    name=str(item["name"]),
                    size=int(item.get("size") or 0),
                    modified_at=item.get("modified_at"),
                    digest=item.get("digest"),
                    details=item.get("details") or {},
                )
            )
        return out

    def show_model(self, name: str) -> dict[str, Any]:
        """Return the endpoint's metadata for `name` (details, parameters, template...)."""
        resp = self._request("POST", ROUTE_SHOW, payload=self._model_payload(name))
        self._check_unary(resp, "Show model", model=name)
        return self._json_object(resp, "model info")

    def model_exists(self, name: str) -> bool:
        """
        True if a local artifact directory exists for `name`.

        Purely a filesystem check; the endpoint is not queried.
        """
        if self.model_dir is None:
            return False
        return (self.model_dir / sanitize_model_name(name)).is_dir()

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    def pull_model(self, name: str, on_progress: Optional[ProgressCallback] = None) -> dict[str, Any]:
        """
        Pull `name` onto the endpoint, forwarding each NDJSON status record to
        `on_progress` as it arrives.

        Raises
        ------
        EndpointConnectionError
            If the endpoint cannot be reached at all.
        TransferError
            On a non-2xx status, an in-stream ``error`` record, or a dropped connection.
        ProtocolError
            If a stream record is not valid JSON.
        """
        resp = self._request("POST", ROUTE_PULL, payload=self._model_payload(name, stream=True), stream=True)
        self._consume_stream(resp, f"Pull of '{name}'", on_progress, stop_on_done=False)
        return {"success": True, "model": name}

    def delete_model(self, name: str) -> dict[str, Any]:
        """Delete `name` from the endpoint. 404 maps to NotFoundError."""
        resp = self._request("DELETE", ROUTE_DELETE, payload=self._model_payload(name))
        try:
            self._check_unary(resp, "Delete model", model=name)
        finally:
            resp.close()
        return {"success": True, "model": name}

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def generate(self, model: str, prompt: str, options: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """One non-streamed completion. Returns the endpoint's response object."""
        payload = {"model": model, "prompt": prompt, **(options or {}), "stream": False}
        resp = self._request("POST", ROUTE_GENERATE, payload=payload)
        self._check_unary(resp, "Generate", model=model)
        data = self._json_object(resp, "generation")
        if "response" not in data:
            raise ProtocolError("Failed to parse generation response: missing 'response'")
        return data

    def stream_generate(
        self,
        model: str,
        prompt: str,
        on_chunk: ProgressCallback,
        options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Streamed completion. Every chunk goes to `on_chunk`; returns the terminal
        chunk (``done: true``).

        Raises
        ------
        TransferError
            If the stream ends before a ``done`` chunk or fails mid-way.
        """
        payload = {"model": model, "prompt": prompt, **(options or {}), "stream": True}
        resp = self._request("POST", ROUTE_GENERATE, payload=payload, stream=True)
        final = self._consume_stream(resp, f"Generation with '{model}'", on_chunk, stop_on_done=True)
        if final is None:
            raise TransferError(f"Generation with '{model}' ended without a final chunk")
        return final

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def check_health(self) -> bool:
        """
        True if the endpoint answers the listing route with a 2xx status within
        ``health_timeout`` seconds. Never raises.
        """
        try:
            resp = self._session.request(
                "GET", f"{self.host}{ROUTE_LIST}", stream=True, timeout=self.settings.health_timeout
            )
        except (requests.RequestException, OSError):
            return False
        try:
            return _is_success(resp)
        finally:
            resp.close()

    def get_server_info(self) -> dict[str, Any]:
        """Availability summary for status displays. Never raises."""
        info: dict[str, Any] = {"available": False, "host": self.host, "models": 0, "model_list": []}
        if not self.check_health():
            return info
        try:
            models = self.list_models()
        except (EndpointConnectionError, EndpointStatusError, ProtocolError) as e:
            info["error"] = str(e)
            return info
        info.update(available=True, models=len(models), model_list=[m.name for m in models])
        return info


__all__ = ["ServingClient", "ServedModel", "ProgressCallback"]
