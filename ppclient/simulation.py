from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from pydantic import ValidationError as SchemaError

from ppclient.errors import ComputationError, PPClientError, TransportError, ValidationError
from ppclient.gateway import HttpGateway
from ppclient.models import HitCounts, SimulationParams, SimulationRequest, SimulationResult
from ppclient.sink import ERROR, UiSink
from ppclient.utils.logging import get_logger
from ppclient.utils.parsing import normalize_mods, parse_optional_int, parse_percentage, resolve_beatmap


@dataclass
class SimulationFields:
    """Form values as typed by the user; every field is raw text."""

    beatmap: Optional[str] = None
    accuracy: Optional[str] = None
    good: Optional[str] = None
    meh: Optional[str] = None
    combo: Optional[str] = None
    misses: Optional[str] = None
    mods: Optional[str] = None


class SimulationRequestBuilder:
    """Validates form fields into a SimulationRequest without touching the network.

    Checks run beatmap, accuracy, optional fields, mods; the first failure is
    raised as ValidationError.
    """

    def build(self, fields: SimulationFields) -> SimulationRequest:
        beatmap_id = resolve_beatmap(fields.beatmap)
        accuracy = self._accuracy(fields)
        combo = parse_optional_int(fields.combo)
        misses = parse_optional_int(fields.misses)
        mods = normalize_mods(fields.mods)
        params = SimulationParams(accuracy=accuracy, mods=mods, combo=combo, misses=misses)
        return SimulationRequest(beatmap_id=beatmap_id, params=params)

    def _accuracy(self, fields: SimulationFields) -> Union[float, HitCounts]:
        percentage = parse_percentage(fields.accuracy)
        good = parse_optional_int(fields.good)
        meh = parse_optional_int(fields.meh)
        if percentage is not None:
            if not 0.0 <= percentage <= 100.0:
                raise ValidationError("accuracy", "accuracy out of range")
            return percentage
        if good is None and meh is None:
            raise ValidationError("accuracy", "fill either accuracy or hit counts")
        return HitCounts(good=good or 0, meh=meh or 0)


class Simulator:
    """One simulate submission: build, send once, render."""

    def __init__(self, gateway: HttpGateway, sink: UiSink, builder: Optional[SimulationRequestBuilder] = None) -> None:
        self.gateway = gateway
        self.sink = sink
        self.builder = builder or SimulationRequestBuilder()
        self.logger = get_logger("simulate")

    def submit(self, fields: SimulationFields) -> SimulationResult:
        try:
            request = self.builder.build(fields)
        except ValidationError as e:
            self.sink.on_notify(ERROR, e.message, False)
            raise
        self.logger.info("Simulating beatmap %s (mods=%s)", request.beatmap_id, [m.value for m in request.params.mods])
        try:
            result = self._send(request)
        except PPClientError as e:
            self.sink.on_notify(ERROR, str(e), True)
            raise
        self.sink.on_results(result)
        return result

    def _send(self, request: SimulationRequest) -> SimulationResult:
        payload = self.gateway.simulate(request)
        if payload.get("status") != "ok":
            self.logger.debug("Simulation of %s failed: %s", request.beatmap_id, payload.get("status"))
            raise ComputationError("Error while simulating the play.")
        try:
            return SimulationResult.model_validate(payload.get("results") or {})
        except SchemaError as e:
            raise TransportError(f"Malformed simulation results: {e.error_count()} problem(s)") from e
