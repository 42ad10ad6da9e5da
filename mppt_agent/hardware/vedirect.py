"""VE.Direct MPPT charge controller records and field catalogue."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields
from typing import Callable, Iterator, Mapping, Optional

from mppt_agent.clock import seconds_to_ms, ticks_diff, ticks_ms

logger = logging.getLogger(__name__)

# Retained-channel fields in emission order.
TRACKED_FIELDS: tuple[str, ...] = (
    "PID",
    "SER",
    "FW",
    "LOAD",
    "CS",
    "ERR",
    "OR",
    "MPPT",
    "HSDS",
    "V",
    "I",
    "P",
    "VPV",
    "PPV",
    "H19",
    "H20",
    "H21",
    "H22",
    "H23",
    "E",
)


@dataclass(frozen=True)
class FieldSpec:
    kind: str
    unit: Optional[str] = None
    decimals: int = 0


FIELD_CATALOGUE: dict[str, FieldSpec] = {
    "PID": FieldSpec("pid"),
    "SER": FieldSpec("str"),
    "FW": FieldSpec("str"),
    "LOAD": FieldSpec("bool"),
    "CS": FieldSpec("cs"),
    "ERR": FieldSpec("err"),
    "OR": FieldSpec("or"),
    "MPPT": FieldSpec("mppt"),
    "HSDS": FieldSpec("int", "d"),
    "V": FieldSpec("float", "V", 2),
    "I": FieldSpec("float", "A", 2),
    "P": FieldSpec("int", "W"),
    "VPV": FieldSpec("float", "V", 2),
    "IPV": FieldSpec("float", "A", 2),
    "PPV": FieldSpec("int", "W"),
    "H19": FieldSpec("float", "kWh", 3),
    "H20": FieldSpec("float", "kWh", 3),
    "H21": FieldSpec("int", "W"),
    "H22": FieldSpec("float", "kWh", 3),
    "H23": FieldSpec("int", "W"),
    "E": FieldSpec("float", "%", 1),
}

PRODUCT_NAMES: dict[int, str] = {
    0x0300: "BlueSolar MPPT 70|15",
    0xA040: "BlueSolar MPPT 75|50",
    0xA041: "BlueSolar MPPT 150|35",
    0xA042: "BlueSolar MPPT 75|15",
    0xA043: "BlueSolar MPPT 100|15",
    0xA044: "BlueSolar MPPT 100|30",
    0xA045: "BlueSolar MPPT 100|50",
    0xA046: "BlueSolar MPPT 150|70",
    0xA047: "BlueSolar MPPT 150|100",
    0xA049: "BlueSolar MPPT 100|50 rev2",
    0xA04A: "BlueSolar MPPT 100|30 rev2",
    0xA04B: "BlueSolar MPPT 150|35 rev2",
    0xA04C: "BlueSolar MPPT 75|10",
    0xA04D: "BlueSolar MPPT 150|45",
    0xA04E: "BlueSolar MPPT 150|60",
    0xA04F: "BlueSolar MPPT 150|85",
    0xA050: "SmartSolar MPPT 250|100",
    0xA051: "SmartSolar MPPT 150|100",
    0xA052: "SmartSolar MPPT 150|85",
    0xA053: "SmartSolar MPPT 75|15",
    0xA054: "SmartSolar MPPT 75|10",
    0xA055: "SmartSolar MPPT 100|15",
    0xA056: "SmartSolar MPPT 100|30",
    0xA057: "SmartSolar MPPT 100|50",
    0xA058: "SmartSolar MPPT 150|35",
    0xA059: "SmartSolar MPPT 150|100 rev2",
    0xA05A: "SmartSolar MPPT 150|85 rev2",
    0xA05B: "SmartSolar MPPT 250|70",
    0xA05C: "SmartSolar MPPT 250|85",
    0xA05D: "SmartSolar MPPT 250|60",
    0xA05E: "SmartSolar MPPT 250|45",
    0xA05F: "SmartSolar MPPT 100|20",
    0xA060: "SmartSolar MPPT 100|20 48V",
    0xA061: "SmartSolar MPPT 150|45",
    0xA062: "SmartSolar MPPT 150|60",
    0xA063: "SmartSolar MPPT 150|70",
    0xA064: "SmartSolar MPPT 250|85 rev2",
    0xA065: "SmartSolar MPPT 250|100 rev2",
}

CHARGER_STATES: dict[int, str] = {
    0: "OFF",
    2: "Fault",
    3: "Bulk",
    4: "Absorbtion",
    5: "Float",
    7: "Equalize (manual)",
    245: "Starting-up",
    247: "Auto equalize / Recondition",
    252: "External Control",
}

ERROR_CODES: dict[int, str] = {
    0: "No error",
    2: "Battery voltage too high",
    17: "Charger temperature too high",
    18: "Charger over current",
    19: "Charger current reversed",
    20: "Bulk time limit exceeded",
    21: "Current sensor issue",
    26: "Terminals overheated",
    28: "Converter issue",
    33: "Input voltage too high (solar panel)",
    34: "Input current too high (solar panel)",
    38: "Input shutdown (excessive battery voltage)",
    39: "Input shutdown (due to current flow during off mode)",
    65: "Lost communication with one of devices",
    66: "Synchronised charging device configuration issue",
    67: "BMS connection lost",
    68: "Network misconfigured",
    116: "Factory calibration data lost",
    117: "Invalid/incompatible firmware",
    119: "User settings invalid",
}

OFF_REASONS: dict[int, str] = {
    0x00000000: "Not off",
    0x00000001: "No input power",
    0x00000002: "Switched off (power switch)",
    0x00000004: "Switched off (device mode register)",
    0x00000008: "Remote input",
    0x00000010: "Protection active",
    0x00000020: "Paygo",
    0x00000040: "BMS",
    0x00000080: "Engine shutdown detection",
    0x00000100: "Analysing input voltage",
}

TRACKER_MODES: dict[int, str] = {
    0: "OFF",
    1: "Voltage or current limited",
    2: "MPP Tracker active",
}

_LOOKUPS: dict[str, dict[int, str]] = {
    "cs": CHARGER_STATES,
    "err": ERROR_CODES,
    "or": OFF_REASONS,
    "mppt": TRACKER_MODES,
}


def product_name(pid: int) -> str:
    return PRODUCT_NAMES.get(int(pid), f"0x{int(pid):04X}")


def render_value(name: str, value: object) -> str:
    """Render a field value as the string published on the retained channel."""

    spec = FIELD_CATALOGUE.get(name)
    kind = spec.kind if spec else "str"
    if kind == "pid":
        return product_name(int(value))
    if kind == "bool":
        return "ON" if value else "OFF"
    if kind in _LOOKUPS:
        return _LOOKUPS[kind].get(int(value), "Unknown")
    if kind == "int":
        return str(int(round(float(value))))
    if kind == "float":
        return f"{float(value):.{spec.decimals}f}"
    return str(value)


def _coerce_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            parsed = float(value)
        elif isinstance(value, str):
            parsed = float(value.strip())
        else:
            return None
    except (ValueError, OverflowError):
        return None
    return parsed if math.isfinite(parsed) else None


def _coerce_int(value: object) -> int | None:
    if isinstance(value, str) and value.strip().lower().startswith("0x"):
        try:
            return int(value.strip(), 16)
        except ValueError:
            return None
    parsed = _coerce_float(value)
    if parsed is None:
        return None
    return int(round(parsed))


def _coerce_bool(value: object) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"on", "true", "1", "yes"}:
            return True
        if lowered in {"off", "false", "0", "no"}:
            return False
    return None


def coerce_field(name: str, value: object) -> object | None:
    """Coerce an ingested value to the field's native type, ``None`` when it cannot be."""

    spec = FIELD_CATALOGUE.get(name)
    if spec is None or name == "IPV":
        return None
    if spec.kind == "str":
        return None if value is None else str(value).strip()
    if spec.kind == "bool":
        return _coerce_bool(value)
    if spec.kind == "float":
        parsed = _coerce_float(value)
        if parsed is None or parsed != parsed:
            return None
        return parsed
    return _coerce_int(value)


@dataclass
class VeDirectFrame:
    PID: int = 0
    SER: str = ""
    FW: str = ""
    LOAD: bool = False
    CS: int = 0
    ERR: int = 0
    OR: int = 0
    MPPT: int = 0
    HSDS: int = 0
    V: float = 0.0
    I: float = 0.0
    P: int = 0
    VPV: float = 0.0
    PPV: int = 0
    H19: float = 0.0
    H20: float = 0.0
    H21: int = 0
    H22: float = 0.0
    H23: int = 0
    E: float = 0.0

    @property
    def IPV(self) -> float:
        if self.VPV <= 0:
            return 0.0
        return round(self.PPV / self.VPV, 2)

    def as_fields(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in TRACKED_FIELDS}

    def merged(self, updates: Mapping[str, object]) -> "VeDirectFrame":
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(updates)
        return VeDirectFrame(**values)


@dataclass
class VeDirectDevice:
    """One controller slot in the fleet; ``last_update`` is a tick value or ``None``."""

    index: int
    frame: VeDirectFrame = field(default_factory=VeDirectFrame)
    last_update: Optional[int] = None

    @property
    def serial(self) -> str:
        return self.frame.SER or f"vedirect{self.index}"

    def current_values(self) -> dict[str, object]:
        return self.frame.as_fields()

    def is_data_valid(self, now: int, window_ms: int) -> bool:
        if self.last_update is None:
            return False
        return ticks_diff(now, self.last_update) < window_ms

    def data_age_ms(self, now: int) -> Optional[int]:
        if self.last_update is None:
            return None
        return max(0, ticks_diff(now, self.last_update))


class VeDirectFleet:
    """Fixed-size set of controllers fed by ingest or the simulator."""

    def __init__(self, settings, *, clock: Callable[[], int] = ticks_ms) -> None:
        self.settings = settings
        self._clock = clock
        self._devices = [VeDirectDevice(index=i) for i in range(settings.vedirect.device_count)]

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[VeDirectDevice]:
        return iter(self._devices)

    def __getitem__(self, index: int) -> VeDirectDevice:
        return self._devices[index]

    @property
    def valid_window_ms(self) -> int:
        return seconds_to_ms(self.settings.vedirect.data_valid_seconds)

    def is_data_valid(self, index: int, now: int | None = None) -> bool:
        now = self._clock() if now is None else now
        return self._devices[index].is_data_valid(now, self.valid_window_ms)

    def ingest_payload(self, index: int, payload: Mapping[str, object], *, now: int | None = None) -> dict[str, object]:
        """Apply a partial frame to one device and stamp its update tick.

        Unknown keys and values that cannot be coerced are skipped. Returns the
        accepted fields; nothing is stamped when none were accepted.
        """

        if index < 0 or index >= len(self._devices):
            raise IndexError(index)
        accepted: dict[str, object] = {}
        for key, raw in payload.items():
            name = str(key).upper()
            if name not in TRACKED_FIELDS:
                continue
            value = coerce_field(name, raw)
            if value is None:
                logger.debug("VE.Direct ingest skipped %s=%r on device %s", name, raw, index)
                continue
            accepted[name] = value
        if not accepted:
            return accepted
        device = self._devices[index]
        device.frame = device.frame.merged(accepted)
        device.last_update = self._clock() if now is None else now
        return accepted
